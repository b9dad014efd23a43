"""Firestore REST adapter — implements DocumentStore over the v1 REST API.

Uses httpx.AsyncClient for every call. The REST surface has no push
channel, so live subscriptions poll ``documents:runQuery`` and push a
snapshot only when the result set changed.

Gracefully degrades: subscription errors are reported through the
listener's error callback and polling continues on the next tick.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from hivetask.ports.document_store import (
    Document,
    ErrorCallback,
    FieldFilter,
    OrderBy,
    SnapshotCallback,
    StoreError,
)

logger = logging.getLogger(__name__)

_API_ROOT = "https://firestore.googleapis.com/v1"
_COMMIT_BATCH = 500

_OPS = {
    "==": "EQUAL",
    "in": "IN",
    "array_contains": "ARRAY_CONTAINS",
}


# ---------------------------------------------------------------------------
# Typed value encoding
# ---------------------------------------------------------------------------


def encode_value(value: Any) -> dict:
    """Encode a Python value as a Firestore typed value."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        stamp = value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
        return {"timestampValue": stamp}
    if isinstance(value, (list, tuple)):
        if not value:
            return {"arrayValue": {}}
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    raise TypeError(f"Cannot encode {type(value).__name__} for Firestore")


def encode_fields(data: Document) -> dict:
    return {k: encode_value(v) for k, v in data.items() if k != "id"}


def _parse_timestamp(raw: str) -> datetime:
    # Firestore emits up to nanosecond precision; datetime keeps microseconds.
    raw = raw.replace("Z", "+00:00")
    if "." in raw:
        head, _, rest = raw.partition(".")
        digits = ""
        for ch in rest:
            if not ch.isdigit():
                break
            digits += ch
        raw = f"{head}.{digits[:6].ljust(6, '0')}{rest[len(digits):]}"
    return datetime.fromisoformat(raw)


def decode_value(value: dict) -> Any:
    """Decode a Firestore typed value into a Python value."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return _parse_timestamp(value["timestampValue"])
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    if "referenceValue" in value:
        return value["referenceValue"]
    raise ValueError(f"Unsupported Firestore value: {sorted(value)}")


def decode_fields(fields: dict) -> Document:
    return {k: decode_value(v) for k, v in fields.items()}


def decode_document(raw: dict) -> Document:
    doc_id = raw["name"].rsplit("/", 1)[-1]
    return {"id": doc_id, **decode_fields(raw.get("fields", {}))}


def _encoded(data: Document) -> dict:
    try:
        return encode_fields(data)
    except TypeError as exc:
        raise StoreError(f"Cannot encode document: {exc}") from exc


def _decoded(resp: httpx.Response) -> Document:
    try:
        return decode_document(resp.json())
    except (KeyError, TypeError, ValueError) as exc:
        raise StoreError(f"Malformed document response: {exc}") from exc


def build_structured_query(
    collection: str,
    filters: list[FieldFilter],
    order_by: OrderBy | None = None,
    limit: int | None = None,
) -> dict:
    """Build the ``structuredQuery`` body for ``documents:runQuery``."""
    query: dict[str, Any] = {"from": [{"collectionId": collection}]}

    clauses = [
        {
            "fieldFilter": {
                "field": {"fieldPath": f.field},
                "op": _OPS[f.op],
                "value": encode_value(f.value),
            }
        }
        for f in filters
    ]
    if len(clauses) == 1:
        query["where"] = clauses[0]
    elif clauses:
        query["where"] = {"compositeFilter": {"op": "AND", "filters": clauses}}

    if order_by is not None:
        query["orderBy"] = [{
            "field": {"fieldPath": order_by.field},
            "direction": "DESCENDING" if order_by.descending else "ASCENDING",
        }]
    if limit is not None:
        query["limit"] = limit
    return query


# ---------------------------------------------------------------------------
# Polling subscription
# ---------------------------------------------------------------------------


class _PollingSubscription:
    """Re-runs a query on an interval and pushes changed result sets."""

    def __init__(
        self,
        store: FirestoreRestStore,
        collection: str,
        filters: list[FieldFilter],
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
        order_by: OrderBy | None,
        limit: int | None,
        interval: float,
    ) -> None:
        self._store = store
        self._collection = collection
        self._filters = filters
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._order_by = order_by
        self._limit = limit
        self._interval = interval
        self._last: list[Document] | None = None
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._task.add_done_callback(self._done)

    async def _run(self) -> None:
        while True:
            try:
                docs = await self._store.query(
                    self._collection, self._filters, self._order_by, self._limit,
                )
            except StoreError as exc:
                logger.warning("Poll of %s failed: %s", self._collection, exc)
                self._on_error(exc)
            else:
                if docs != self._last:
                    self._push(docs)
            await asyncio.sleep(self._interval)

    def _push(self, docs: list[Document]) -> None:
        try:
            self._on_snapshot(docs)
        except Exception as exc:
            # _last stays stale, so the same result is offered again next poll.
            logger.error("Snapshot handler for %s failed: %s", self._collection, exc)
            self._on_error(exc)
            return
        self._last = docs

    def _done(self, task: asyncio.Task) -> None:
        self._store._subscriptions.discard(self)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Subscription to %s stopped: %s", self._collection, task.exception())

    def cancel(self) -> None:
        self._task.cancel()
        self._store._subscriptions.discard(self)


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class FirestoreRestStore:
    """Firestore implementation of DocumentStore."""

    def __init__(
        self,
        project_id: str,
        database: str = "(default)",
        api_key: str = "",
        id_token: str | None = None,
        poll_seconds: float = 2.0,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._root = f"projects/{project_id}/databases/{database}/documents"
        self._url = f"{_API_ROOT}/{self._root}"
        self._params = {"key": api_key} if api_key else {}
        self._poll_seconds = poll_seconds
        headers = {"Authorization": f"Bearer {id_token}"} if id_token else {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)
        self._subscriptions: set[_PollingSubscription] = set()

    def _name(self, collection: str, doc_id: str) -> str:
        return f"{self._root}/{collection}/{doc_id}"

    async def _request(
        self,
        method: str,
        url: str,
        allow_missing: bool = False,
        params: list[tuple[str, str]] | None = None,
        **kwargs: Any,
    ) -> httpx.Response | None:
        query = list(self._params.items()) + (params or [])
        try:
            resp = await self._client.request(method, url, params=query, **kwargs)
        except httpx.HTTPError as exc:
            raise StoreError(f"{method} {url} failed: {exc}") from exc

        if allow_missing and resp.status_code == 404:
            return None
        if resp.is_error:
            raise StoreError(
                f"{method} {url} failed: HTTP {resp.status_code} {resp.text[:200]}"
            )
        return resp

    async def _commit(self, writes: list[dict]) -> None:
        for start in range(0, len(writes), _COMMIT_BATCH):
            await self._request(
                "POST", f"{self._url}:commit",
                json={"writes": writes[start:start + _COMMIT_BATCH]},
            )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add(self, collection: str, data: Document) -> str:
        resp = await self._request(
            "POST", f"{self._url}/{collection}", json={"fields": _encoded(data)},
        )
        doc_id = _decoded(resp)["id"]
        logger.debug("Created %s/%s", collection, doc_id)
        return doc_id

    async def set(self, collection: str, doc_id: str, data: Document) -> None:
        await self._request(
            "PATCH", f"{self._url}/{collection}/{doc_id}",
            json={"fields": _encoded(data)},
        )

    async def update(self, collection: str, doc_id: str, fields: Document) -> None:
        params = [("updateMask.fieldPaths", name) for name in fields if name != "id"]
        params.append(("currentDocument.exists", "true"))
        await self._request(
            "PATCH", f"{self._url}/{collection}/{doc_id}",
            params=params, json={"fields": _encoded(fields)},
        )

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._request("DELETE", f"{self._url}/{collection}/{doc_id}")

    async def array_union(
        self, collection: str, doc_id: str, field: str, value: Any,
    ) -> None:
        await self._commit([{
            "transform": {
                "document": self._name(collection, doc_id),
                "fieldTransforms": [{
                    "fieldPath": field,
                    "appendMissingElements": {"values": [_encoded({field: value})[field]]},
                }],
            },
            "currentDocument": {"exists": True},
        }])

    async def delete_where(
        self, collection: str, filters: list[FieldFilter],
    ) -> int:
        docs = await self.query(collection, filters)
        if not docs:
            return 0
        await self._commit([{"delete": self._name(collection, d["id"])} for d in docs])
        logger.info("Deleted %d documents from %s", len(docs), collection)
        return len(docs)

    async def delete_cascade(
        self,
        collection: str,
        doc_id: str,
        child_collection: str,
        child_filters: list[FieldFilter],
    ) -> int:
        children = await self.query(child_collection, child_filters)
        # The parent goes in the first batch, so no batch can remove children
        # while the parent survives.
        writes = [{"delete": self._name(collection, doc_id)}]
        writes += [{"delete": self._name(child_collection, d["id"])} for d in children]
        await self._commit(writes)
        logger.info("Deleted %s/%s with %d %s", collection, doc_id,
                    len(children), child_collection)
        return len(children)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> Document | None:
        resp = await self._request(
            "GET", f"{self._url}/{collection}/{doc_id}", allow_missing=True,
        )
        if resp is None:
            return None
        return _decoded(resp)

    async def query(
        self,
        collection: str,
        filters: list[FieldFilter],
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        body = {"structuredQuery": build_structured_query(collection, filters, order_by, limit)}
        resp = await self._request("POST", f"{self._url}:runQuery", json=body)
        try:
            return [
                decode_document(item["document"])
                for item in resp.json()
                if "document" in item
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreError(f"Malformed runQuery response for {collection}: {exc}") from exc

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
    ) -> _PollingSubscription:
        sub = _PollingSubscription(
            self, collection, list(filters), on_snapshot, on_error,
            order_by, limit, self._poll_seconds,
        )
        self._subscriptions.add(sub)
        return sub

    async def close(self) -> None:
        for sub in list(self._subscriptions):
            sub.cancel()
        if self._owns_client:
            await self._client.aclose()
