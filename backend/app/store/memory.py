"""
memory.py — In-process document store.

Used by the test-suite and for local development
(``STORE_BACKEND=memory``). Every operation completes without yielding
to the event loop, which makes ``commit`` and ``put_if_absent`` atomic
with respect to other coroutines.

Reads and writes deep-copy documents so callers can never mutate stored
state by accident.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional, Sequence

from backend.app.core.errors import NotFoundError
from backend.app.store.base import (
    BatchOperation,
    Document,
    DocumentStore,
    WriteBatch,
    get_field,
)

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """Dict-of-dicts store keyed by collection path then document id."""

    def __init__(self, *, max_in_values: int = 10):
        self.max_in_values = max_in_values
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        # Instrumentation for tests and debugging
        self.query_log: List[Dict[str, Any]] = []
        self.commit_count = 0

    # ── Reads ──

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def list(self, collection: str) -> List[Document]:
        docs = self._collections.get(collection, {})
        return [Document(doc_id, copy.deepcopy(data)) for doc_id, data in docs.items()]

    async def query_in(
        self,
        collection: str,
        field_path: str,
        values: Sequence[Any],
    ) -> List[Document]:
        self._check_in_values(values)
        self.query_log.append(
            {"collection": collection, "field": field_path, "values": list(values)}
        )
        wanted = set(values)
        return [
            Document(doc_id, copy.deepcopy(data))
            for doc_id, data in self._collections.get(collection, {}).items()
            if get_field(data, field_path) in wanted
        ]

    # ── Writes ──

    async def put_if_absent(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
    ) -> bool:
        return self._create(collection, doc_id, data)

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        self._set(collection, doc_id, data, merge)

    async def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        docs = self._collections.get(collection, {})
        if doc_id not in docs:
            raise NotFoundError("Document", collection=collection, doc_id=doc_id)
        docs[doc_id].update(copy.deepcopy(fields))

    async def commit(self, batch: WriteBatch) -> int:
        if batch.committed:
            raise ValueError("WriteBatch has already been committed")
        created = [(op.collection, op.doc_id) for op in batch.operations if self._apply(op)]
        batch.committed = True
        batch.created = created
        self.commit_count += 1
        logger.debug("Committed batch: %d ops, %d created", len(batch), len(created))
        return len(created)

    # ── Helpers ──

    def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))

    def _apply(self, op: BatchOperation) -> int:
        if op.kind == "create":
            return int(self._create(op.collection, op.doc_id, op.data))
        self._set(op.collection, op.doc_id, op.data, op.merge)
        return 0

    def _create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> bool:
        docs = self._collections.setdefault(collection, {})
        if doc_id in docs:
            return False
        docs[doc_id] = copy.deepcopy(data)
        return True

    def _set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool) -> None:
        docs = self._collections.setdefault(collection, {})
        if merge and doc_id in docs:
            docs[doc_id].update(copy.deepcopy(data))
        else:
            docs[doc_id] = copy.deepcopy(data)
