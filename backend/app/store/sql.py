"""
sql.py — PostgreSQL document store on SQLAlchemy 2.0 asyncio.

All documents live in one ``documents`` table:

    collection (text) ─┐ primary key
    doc_id     (text) ─┘
    data       (jsonb)
    updated_at (timestamptz)

``put_if_absent`` and batched creates use ``INSERT … ON CONFLICT DO
NOTHING``, so the first writer wins at the database level. A batch runs in
one transaction. Datetimes are stored as ISO-8601 strings inside the JSON
body; the domain models parse them back on read.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import DateTime, String, func, select
from sqlalchemy.dialects.postgresql import JSONB, insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.config import settings
from backend.app.core.database import Base, close_db, get_session_factory, init_db
from backend.app.core.errors import NotFoundError, StoreError
from backend.app.store.base import (
    BatchOperation,
    Document,
    DocumentStore,
    WriteBatch,
)

logger = logging.getLogger(__name__)


class DocumentRow(Base):
    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(255), primary_key=True)
    doc_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    data: Mapped[Dict[str, Any]] = mapped_column(JSONB, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


def _to_json(value: Any) -> Any:
    """Recursively convert datetimes so the body is JSON-serialisable."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json(v) for v in value]
    return value


class SqlDocumentStore(DocumentStore):
    """Document store backed by a single JSONB table."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        max_in_values: Optional[int] = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self.max_in_values = max_in_values or settings.STORE_IN_QUERY_LIMIT

    # ── Reads ──

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        try:
            async with self._session_factory() as session:
                row = await session.get(DocumentRow, (collection, doc_id))
                return dict(row.data) if row is not None else None
        except SQLAlchemyError as exc:
            raise StoreError("get", str(exc), collection=collection, doc_id=doc_id) from exc

    async def list(self, collection: str) -> List[Document]:
        stmt = select(DocumentRow).where(DocumentRow.collection == collection)
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise StoreError("list", str(exc), collection=collection) from exc
        return [Document(row.doc_id, dict(row.data)) for row in rows]

    async def query_in(
        self,
        collection: str,
        field_path: str,
        values: Sequence[Any],
    ) -> List[Document]:
        self._check_in_values(values)
        column = DocumentRow.data
        for part in field_path.split("."):
            column = column[part]
        stmt = select(DocumentRow).where(
            DocumentRow.collection == collection,
            column.astext.in_([str(v) for v in values]),
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise StoreError(
                "query", str(exc), collection=collection, field=field_path,
            ) from exc
        return [Document(row.doc_id, dict(row.data)) for row in rows]

    async def ping(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(select(1))
            return True
        except SQLAlchemyError as exc:
            logger.warning("Store ping failed: %s", exc)
            return False

    # ── Writes ──

    async def put_if_absent(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
    ) -> bool:
        batch = WriteBatch().create(collection, doc_id, data)
        return await self.commit(batch) == 1

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        await self.commit(WriteBatch().set(collection, doc_id, data, merge=merge))

    async def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                row = await session.get(
                    DocumentRow, (collection, doc_id), with_for_update=True,
                )
                if row is None:
                    raise NotFoundError("Document", collection=collection, doc_id=doc_id)
                row.data = {**row.data, **_to_json(fields)}
        except SQLAlchemyError as exc:
            raise StoreError("update", str(exc), collection=collection, doc_id=doc_id) from exc

    async def commit(self, batch: WriteBatch) -> int:
        if batch.committed:
            raise ValueError("WriteBatch has already been committed")
        created = []
        try:
            async with self._session_factory() as session, session.begin():
                for op in batch.operations:
                    if await self._apply(session, op):
                        created.append((op.collection, op.doc_id))
        except SQLAlchemyError as exc:
            raise StoreError("commit", str(exc), operations=len(batch)) from exc
        batch.committed = True
        batch.created = created
        return len(created)

    async def init(self) -> None:
        try:
            await init_db()
        except SQLAlchemyError as exc:
            raise StoreError("init", str(exc)) from exc

    async def close(self) -> None:
        await close_db()

    async def _apply(self, session: AsyncSession, op: BatchOperation) -> int:
        body = _to_json(op.data)
        stmt = pg_insert(DocumentRow).values(
            collection=op.collection, doc_id=op.doc_id, data=body,
        )
        if op.kind == "create":
            result = await session.execute(
                stmt.on_conflict_do_nothing(index_elements=["collection", "doc_id"])
            )
            return result.rowcount or 0

        new_data = DocumentRow.data.op("||")(stmt.excluded.data) if op.merge else stmt.excluded.data
        await session.execute(
            stmt.on_conflict_do_update(
                index_elements=["collection", "doc_id"],
                set_={"data": new_data, "updated_at": func.now()},
            )
        )
        return 0
