"""
HiveTask — Session Cache Database.

Persists the last signed-in identity in SQLite so a relaunch can skip the
identity provider. Holds at most one row; anything stored here may be
discarded without data loss.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from hivetask.ports.identity_cache import CachedSession

logger = logging.getLogger(__name__)

_SLOT = 1


class SqliteIdentityCache:
    """SQLite-backed implementation of the IdentityCache port."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from hivetask.config import settings
            db_path = settings.CACHE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the session_cache table if it doesn't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS session_cache (
                    slot          INTEGER PRIMARY KEY CHECK (slot = 1),
                    identity_json TEXT,
                    external_id   TEXT,
                    saved_at      TEXT NOT NULL
                )
            """)
        logger.debug("Session cache initialized at %s", self._db_path)

    def load(self) -> CachedSession | None:
        """Return the cached session, or None if nothing is cached."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT identity_json, external_id FROM session_cache WHERE slot = ?",
                (_SLOT,),
            ).fetchone()
        if row is None:
            return None
        if row["identity_json"] is None and row["external_id"] is None:
            return None
        return CachedSession(
            identity_json=row["identity_json"],
            external_id=row["external_id"],
        )

    def save(self, identity_json: str | None, external_id: str | None) -> None:
        """Replace the cached session."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO session_cache (slot, identity_json, external_id, saved_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(slot) DO UPDATE SET
                    identity_json = excluded.identity_json,
                    external_id   = excluded.external_id,
                    saved_at      = excluded.saved_at
                """,
                (_SLOT, identity_json, external_id, datetime.now().isoformat()),
            )
        logger.info("Session cached (external id %s)", external_id or "-")

    def clear(self) -> None:
        """Drop the cached session."""
        with self._connect() as conn:
            conn.execute("DELETE FROM session_cache")
        logger.info("Session cache cleared")
