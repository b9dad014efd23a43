"""Document store port — abstract interface for the remote document database.

Core modules depend on this protocol, never on a specific backend.
Documents are plain dicts; the document id is carried under the ``id`` key.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol

Document = dict[str, Any]
SnapshotCallback = Callable[[list[Document]], None]
ErrorCallback = Callable[[Exception], None]

FILTER_OPS = ("==", "in", "array_contains")


class StoreError(Exception):
    """Raised when any document store read or write fails."""


@dataclass(frozen=True)
class FieldFilter:
    field: str
    op: str       # "==" | "in" | "array_contains"
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter op: {self.op!r}")

    def matches(self, doc: Document) -> bool:
        actual = doc.get(self.field)
        if self.op == "==":
            return actual == self.value
        if self.op == "in":
            return actual in self.value
        return isinstance(actual, list) and self.value in actual


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


class Subscription(Protocol):
    """Handle for a live query; ``cancel`` stops further deliveries."""

    def cancel(self) -> None: ...


class DocumentStore(Protocol):
    """Abstract document store used by the session and workspace containers."""

    async def add(self, collection: str, data: Document) -> str: ...

    async def set(self, collection: str, doc_id: str, data: Document) -> None: ...

    async def update(self, collection: str, doc_id: str, fields: Document) -> None: ...

    async def delete(self, collection: str, doc_id: str) -> None: ...

    async def get(self, collection: str, doc_id: str) -> Document | None: ...

    async def query(
        self,
        collection: str,
        filters: list[FieldFilter],
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[Document]: ...

    async def array_union(
        self, collection: str, doc_id: str, field: str, value: Any,
    ) -> None: ...

    async def delete_where(
        self, collection: str, filters: list[FieldFilter],
    ) -> int: ...

    async def delete_cascade(
        self,
        collection: str,
        doc_id: str,
        child_collection: str,
        child_filters: list[FieldFilter],
    ) -> int:
        """Delete a document and its matching children in one write.

        Either everything is deleted or nothing is. Returns the number of
        children removed.
        """
        ...

    def listen(
        self,
        collection: str,
        filters: list[FieldFilter],
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> Subscription: ...

    async def close(self) -> None: ...
