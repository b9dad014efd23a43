"""Document store factory — creates the right adapter based on config."""

from __future__ import annotations

from hivetask.config import settings
from hivetask.ports.document_store import DocumentStore


def create_document_store(id_token: str | None = None) -> DocumentStore:
    """Return the document store matching the STORE_PROVIDER setting.

    Args:
        id_token: Bearer token for the hosted store. Ignored by the
            in-memory store.
    """
    provider = settings.STORE_PROVIDER.lower()

    if provider == "memory":
        from hivetask.adapters.memory_store import MemoryDocumentStore

        return MemoryDocumentStore()

    if provider == "firestore":
        from hivetask.adapters.firestore_store import FirestoreRestStore

        return FirestoreRestStore(
            project_id=settings.FIRESTORE_PROJECT_ID,
            database=settings.FIRESTORE_DATABASE,
            api_key=settings.FIRESTORE_API_KEY,
            id_token=id_token,
            poll_seconds=settings.FIRESTORE_POLL_SECONDS,
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )

    raise ValueError(f"Unknown STORE_PROVIDER: {provider!r}")
