"""Shared test fixtures and configuration.

Sets up environment variables before any hivetask import so config loads
the in-memory store, and provides common fixtures: a memory store, a temp
session cache, and session/workspace containers wired to them.
"""

import os

# Patch env vars BEFORE any hivetask imports
os.environ.setdefault("STORE_PROVIDER", "memory")
os.environ.setdefault("CACHE_PATH", "data/test_session.db")
os.environ.setdefault("INVITE_CODE_LENGTH", "8")
os.environ.setdefault("NOTIFICATION_LIMIT", "30")

import asyncio

import pytest


@pytest.fixture
def memory_store():
    """Return an empty in-memory document store."""
    from hivetask.adapters.memory_store import MemoryDocumentStore
    return MemoryDocumentStore()


@pytest.fixture
def identity_cache(tmp_path):
    """Return a SqliteIdentityCache backed by a temp file."""
    from hivetask.data.db import SqliteIdentityCache
    return SqliteIdentityCache(db_path=str(tmp_path / "test_session.db"))


@pytest.fixture
def session(memory_store, identity_cache):
    from hivetask.core.session import SessionContainer
    return SessionContainer(memory_store, identity_cache)


@pytest.fixture
def workspace(memory_store, session):
    from hivetask.core.workspace import WorkspaceContainer
    return WorkspaceContainer(memory_store, session)


@pytest.fixture
def make_identity():
    """Build an Identity; ids double as readable names in assertions."""
    from hivetask.data.models import Identity

    def _make(user_id: str, name: str | None = None, external_id: str | None = None):
        return Identity(
            id=user_id,
            name=name or user_id.capitalize(),
            email=f"{user_id}@example.com",
            external_id=external_id,
        )

    return _make


@pytest.fixture
def save_user(memory_store):
    """Persist an Identity in the users collection."""
    from hivetask.data.documents import USERS, identity_to_document

    async def _save(identity):
        await memory_store.set(USERS, identity.id, identity_to_document(identity))
        return identity

    return _save


@pytest.fixture
def settle(memory_store, workspace):
    """Run store deliveries and workspace background jobs until both are idle."""

    async def _settle():
        for _ in range(50):
            await memory_store.settle()
            ran = await workspace.drain()
            await asyncio.sleep(0)
            if not ran and not memory_store.pending_deliveries:
                return

    return _settle
