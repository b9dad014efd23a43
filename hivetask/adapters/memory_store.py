"""In-memory document store — implements DocumentStore inside the process.

Backs local development and the test-suite. Live listeners behave like the
hosted store's push channel: each listener gets an initial snapshot, then a
fresh snapshot whenever a write changes its result set. Deliveries are
scheduled on the running event loop, never made inline from the write.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import secrets
import string
from typing import Any

from hivetask.ports.document_store import (
    Document,
    ErrorCallback,
    FieldFilter,
    OrderBy,
    SnapshotCallback,
    StoreError,
)

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_letters + string.digits
_ID_LENGTH = 20


def generate_document_id() -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_LENGTH))


class _Listener:
    def __init__(
        self,
        store: MemoryDocumentStore,
        collection: str,
        filters: list[FieldFilter],
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
        order_by: OrderBy | None,
        limit: int | None,
    ) -> None:
        self._store = store
        self.collection = collection
        self.filters = filters
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.order_by = order_by
        self.limit = limit
        self.last: list[Document] | None = None
        self.scheduled = False
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        self._store._remove_listener(self)


class MemoryDocumentStore:
    """Dict-of-dicts store with query evaluation and live listeners."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Document]] = {}
        self._listeners: list[_Listener] = []
        self._pending = 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add(self, collection: str, data: Document) -> str:
        doc_id = generate_document_id()
        self._docs(collection)[doc_id] = self._clean(data)
        self._notify(collection)
        return doc_id

    async def set(self, collection: str, doc_id: str, data: Document) -> None:
        self._docs(collection)[doc_id] = self._clean(data)
        self._notify(collection)

    async def update(self, collection: str, doc_id: str, fields: Document) -> None:
        doc = self._require(collection, doc_id)
        doc.update(self._clean(fields))
        self._notify(collection)

    async def delete(self, collection: str, doc_id: str) -> None:
        self._docs(collection).pop(doc_id, None)
        self._notify(collection)

    async def array_union(
        self, collection: str, doc_id: str, field: str, value: Any,
    ) -> None:
        doc = self._require(collection, doc_id)
        items = list(doc.get(field) or [])
        if value not in items:
            items.append(copy.deepcopy(value))
        doc[field] = items
        self._notify(collection)

    async def delete_where(
        self, collection: str, filters: list[FieldFilter],
    ) -> int:
        docs = self._docs(collection)
        doomed = [
            doc_id for doc_id, doc in docs.items()
            if all(f.matches(doc) for f in filters)
        ]
        for doc_id in doomed:
            del docs[doc_id]
        if doomed:
            self._notify(collection)
        return len(doomed)

    async def delete_cascade(
        self,
        collection: str,
        doc_id: str,
        child_collection: str,
        child_filters: list[FieldFilter],
    ) -> int:
        children = self._docs(child_collection)
        doomed = [
            child_id for child_id, doc in children.items()
            if all(f.matches(doc) for f in child_filters)
        ]
        for child_id in doomed:
            del children[child_id]
        self._docs(collection).pop(doc_id, None)
        self._notify(child_collection)
        self._notify(collection)
        return len(doomed)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> Document | None:
        doc = self._docs(collection).get(doc_id)
        if doc is None:
            return None
        return {"id": doc_id, **copy.deepcopy(doc)}

    async def query(
        self,
        collection: str,
        filters: list[FieldFilter],
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        return self._evaluate(collection, filters, order_by, limit)

    # ------------------------------------------------------------------
    # Live queries
    # ------------------------------------------------------------------

    def listen(
        self,
        collection: str,
        filters: list[FieldFilter],
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> _Listener:
        listener = _Listener(
            self, collection, list(filters), on_snapshot, on_error, order_by, limit,
        )
        self._listeners.append(listener)
        self._schedule(listener)
        return listener

    @property
    def pending_deliveries(self) -> int:
        return self._pending

    async def settle(self) -> None:
        """Yield to the loop until every scheduled delivery has run."""
        while self._pending:
            await asyncio.sleep(0)

    async def close(self) -> None:
        for listener in list(self._listeners):
            listener.cancel()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _docs(self, collection: str) -> dict[str, Document]:
        return self._collections.setdefault(collection, {})

    def _require(self, collection: str, doc_id: str) -> Document:
        doc = self._docs(collection).get(doc_id)
        if doc is None:
            raise StoreError(f"No document {collection}/{doc_id}")
        return doc

    @staticmethod
    def _clean(data: Document) -> Document:
        return {k: copy.deepcopy(v) for k, v in data.items() if k != "id"}

    def _evaluate(
        self,
        collection: str,
        filters: list[FieldFilter],
        order_by: OrderBy | None,
        limit: int | None,
    ) -> list[Document]:
        results = [
            {"id": doc_id, **copy.deepcopy(doc)}
            for doc_id, doc in self._docs(collection).items()
            if all(f.matches(doc) for f in filters)
        ]
        if order_by is not None:
            present = [d for d in results if d.get(order_by.field) is not None]
            missing = [d for d in results if d.get(order_by.field) is None]
            present.sort(key=lambda d: d[order_by.field], reverse=order_by.descending)
            results = present + missing
        if limit is not None:
            results = results[:limit]
        return results

    def _notify(self, collection: str) -> None:
        for listener in self._listeners:
            if listener.collection == collection:
                self._schedule(listener)

    def _schedule(self, listener: _Listener) -> None:
        if listener.scheduled:
            return
        listener.scheduled = True
        self._pending += 1
        asyncio.get_running_loop().call_soon(self._deliver, listener)

    def _deliver(self, listener: _Listener) -> None:
        self._pending -= 1
        listener.scheduled = False
        if listener.cancelled:
            return
        try:
            result = self._evaluate(
                listener.collection, listener.filters, listener.order_by, listener.limit,
            )
        except Exception as exc:
            logger.warning("Listener on %s failed: %s", listener.collection, exc)
            listener.on_error(exc)
            return
        if result == listener.last:
            return
        listener.last = result
        listener.on_snapshot(copy.deepcopy(result))

    def _remove_listener(self, listener: _Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
