"""
store — Document store abstraction shared by every trigger.

Sub-modules:
    base    — DocumentStore interface, WriteBatch, collection paths
    memory  — in-process implementation (tests, local development)
    sql     — PostgreSQL implementation on SQLAlchemy asyncio
"""

from backend.app.store.base import (
    CHECKLISTS,
    DISASTERS,
    USERS,
    Document,
    DocumentStore,
    WriteBatch,
    checklist_progress_path,
    notifications_path,
)


def create_store(backend: str) -> DocumentStore:
    """Build the configured store backend ("memory" or "sql")."""
    if backend == "memory":
        from backend.app.store.memory import InMemoryDocumentStore
        return InMemoryDocumentStore()
    if backend == "sql":
        from backend.app.store.sql import SqlDocumentStore
        return SqlDocumentStore()
    raise ValueError(f"Unknown store backend: {backend!r}")


__all__ = [
    "CHECKLISTS",
    "DISASTERS",
    "USERS",
    "Document",
    "DocumentStore",
    "WriteBatch",
    "checklist_progress_path",
    "create_store",
    "notifications_path",
]
