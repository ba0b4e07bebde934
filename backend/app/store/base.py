"""
base.py — Document store interface.

Documents are plain dicts addressed by ``(collection, doc_id)``.
Sub-collections are addressed by slash paths, mirroring the mobile
app's layout:

    disasters/{eventId}-{episodeId}
    users/{userId}
    users/{userId}/notifications/{eventId}-{episodeId}-{userId}
    users/{userId}/checklistProgress/{checklistId}
    checklist/{checklistId}

═══════════════════════════════════════════════════════════════════════════
IDEMPOTENT WRITES
═══════════════════════════════════════════════════════════════════════════

There are no locks anywhere in the pipeline. Alert and notification
records are written with create-if-absent semantics, which every
implementation must make atomic (compare-and-set in the backing store,
never a read-then-write in application code):

    put_if_absent(collection, id, data) → True   first writer wins
    put_if_absent(collection, id, data) → False  every later writer

WriteBatch.create() uses the same semantics inside one atomic commit, so a
retried or overlapping invocation can re-stage a record without ever
overwriting it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from backend.app.core.errors import ValidationError

# ── Collection paths ──
DISASTERS = "disasters"
USERS = "users"
CHECKLISTS = "checklist"


def notifications_path(user_id: str) -> str:
    return f"{USERS}/{user_id}/notifications"


def checklist_progress_path(user_id: str) -> str:
    return f"{USERS}/{user_id}/checklistProgress"


def get_field(data: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted field path ("location.countryCode") in a document."""
    value: Any = data
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


@dataclass
class Document:
    """A stored document and its id."""
    id: str
    data: Dict[str, Any]


@dataclass
class BatchOperation:
    kind: str  # "create" | "set"
    collection: str
    doc_id: str
    data: Dict[str, Any]
    merge: bool = False


@dataclass
class WriteBatch:
    """
    Staged writes committed atomically by ``DocumentStore.commit``.

    Created via ``store.batch()``; a batch may only be committed once.
    After the commit, ``created`` holds the (collection, doc_id) of every
    create that actually inserted a document.
    """
    operations: List[BatchOperation] = field(default_factory=list)
    committed: bool = False
    created: List[Tuple[str, str]] = field(default_factory=list)

    def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> "WriteBatch":
        """Stage a create-if-absent write."""
        self.operations.append(BatchOperation("create", collection, doc_id, data))
        return self

    def set(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
        *,
        merge: bool = False,
    ) -> "WriteBatch":
        """Stage an unconditional write (shallow merge when ``merge``)."""
        self.operations.append(BatchOperation("set", collection, doc_id, data, merge))
        return self

    def __len__(self) -> int:
        return len(self.operations)


class DocumentStore(ABC):
    """
    Abstract document store.

    Every component receives the store explicitly; nothing reaches for a
    global client. Implementations raise ``StoreError`` for backend
    failures and ``ValidationError`` for requests the backend would refuse
    (e.g. an oversized ``in`` list).
    """

    max_in_values: int = 10

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return the document body or None."""

    async def exists(self, collection: str, doc_id: str) -> bool:
        return await self.get(collection, doc_id) is not None

    @abstractmethod
    async def list(self, collection: str) -> List[Document]:
        """Return every document in a collection."""

    @abstractmethod
    async def query_in(
        self,
        collection: str,
        field_path: str,
        values: Sequence[Any],
    ) -> List[Document]:
        """Return documents whose ``field_path`` equals one of ``values``."""

    @abstractmethod
    async def put_if_absent(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
    ) -> bool:
        """Create the document unless it exists; True when created."""

    @abstractmethod
    async def set(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        """Write the document, replacing it (or shallow-merging)."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Overwrite top-level fields of an existing document."""

    @abstractmethod
    async def commit(self, batch: WriteBatch) -> int:
        """Apply every staged operation atomically; returns documents created."""

    async def init(self) -> None:
        """Prepare backing storage (tables, connections)."""
        return None

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    def batch(self) -> WriteBatch:
        return WriteBatch()

    def _check_in_values(self, values: Sequence[Any]) -> None:
        if len(values) > self.max_in_values:
            raise ValidationError(
                f"'in' query accepts at most {self.max_in_values} values, got {len(values)}",
                field="values",
            )
