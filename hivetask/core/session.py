"""
HiveTask — Session Container.

Holds exactly one authenticated Identity, or none. On launch it cross-checks
the locally cached identity against the remote users collection; every
resolution path ends with ``is_loading`` False, signed in or not.

Lookup failures fail closed: a store error while resolving means signed out,
never a stale or guessed identity.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from pydantic import BaseModel, ValidationError

from hivetask.core.errors import MutationResult, TransientFailure, Unauthenticated
from hivetask.data.documents import USERS, document_to_identity, identity_to_document
from hivetask.data.models import ExternalCredential, Identity, utcnow
from hivetask.ports.document_store import FieldFilter, StoreError

if TYPE_CHECKING:
    from hivetask.ports.document_store import DocumentStore
    from hivetask.ports.identity_cache import IdentityCache

logger = logging.getLogger(__name__)


class CachedIdentity(BaseModel):
    """Shape of the identity reference kept in the local cache."""

    id: str
    name: str = ""
    email: str = ""
    external_id: str | None = None

    @classmethod
    def from_identity(cls, identity: Identity) -> CachedIdentity:
        return cls(
            id=identity.id,
            name=identity.name,
            email=identity.email,
            external_id=identity.external_id,
        )


class SessionContainer:
    """Owns the signed-in identity for one app session."""

    def __init__(
        self,
        store: DocumentStore,
        cache: IdentityCache,
        default_display_name: str = "Hive User",
    ) -> None:
        self._store = store
        self._cache = cache
        self._default_display_name = default_display_name
        self._listeners: list[Callable[[], None]] = []
        self.current: Identity | None = None
        self.is_loading = False

    @property
    def is_authenticated(self) -> bool:
        return self.current is not None

    def add_listener(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback()

    def require_identity(self) -> Identity:
        if self.current is None:
            raise Unauthenticated("No signed-in identity")
        return self.current

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    async def resolve_existing_session(self) -> Identity | None:
        """Restore the cached session, if it still resolves remotely."""
        self.is_loading = True
        self._notify()
        try:
            cached = self._cache.load()
            if cached is None:
                logger.info("No cached session")
                self.current = None
                return None

            identity = await self._recover(cached.identity_json, cached.external_id)
            if identity is None:
                self.current = None
                return None

            await self._adopt(identity)
            logger.info("Session restored for %s", identity.id)
            return identity
        except StoreError as exc:
            logger.warning("Session lookup failed, continuing signed out: %s", exc)
            self.current = None
            return None
        finally:
            self.is_loading = False
            self._notify()

    async def _recover(
        self, identity_json: str | None, external_id: str | None,
    ) -> Identity | None:
        cached_identity = self._decode(identity_json)
        if cached_identity is not None:
            doc = await self._store.get(USERS, cached_identity.id)
            if doc is not None:
                return document_to_identity(doc)
            logger.info("Cached identity %s no longer exists", cached_identity.id)
            self._cache.clear()
            return None

        # Partial or corrupted cache: try the provider id before giving up.
        if external_id:
            identity = await self._find_by_external_id(external_id)
            if identity is not None:
                logger.info("Recovered session %s from provider id", identity.id)
                return identity

        self._cache.clear()
        return None

    @staticmethod
    def _decode(identity_json: str | None) -> CachedIdentity | None:
        if not identity_json:
            return None
        try:
            return CachedIdentity.model_validate_json(identity_json)
        except ValidationError as exc:
            logger.warning("Discarding corrupt cached identity: %s", exc.error_count())
            return None

    # ------------------------------------------------------------------
    # Sign in / out
    # ------------------------------------------------------------------

    async def sign_in(self, credential: ExternalCredential) -> MutationResult[Identity]:
        """Adopt the identity behind a verified provider credential.

        Existing identities are matched on the provider id; otherwise a new
        identity record is created.
        """
        try:
            identity = await self._find_by_external_id(credential.external_id)
            if identity is None:
                identity = await self._create_identity(credential)
        except StoreError as exc:
            logger.warning("Sign-in failed: %s", exc)
            return MutationResult.failure(TransientFailure(str(exc)))

        await self._adopt(identity)
        self._notify()
        logger.info("Signed in as %s", identity.id)
        return MutationResult.success(identity)

    async def sign_out(self) -> None:
        identity = self.current
        if identity is not None:
            await self._set_online(identity, False)
        self._cache.clear()
        self.current = None
        self._notify()
        logger.info("Signed out")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _find_by_external_id(self, external_id: str) -> Identity | None:
        docs = await self._store.query(
            USERS, [FieldFilter("external_id", "==", external_id)], limit=1,
        )
        if not docs:
            return None
        return document_to_identity(docs[0])

    async def _create_identity(self, credential: ExternalCredential) -> Identity:
        identity = Identity(
            id="",
            name=credential.display_name or self._default_display_name,
            email=credential.email or "",
            external_id=credential.external_id,
        )
        identity.id = await self._store.add(USERS, identity_to_document(identity))
        logger.info("Identity created: %s '%s'", identity.id, identity.name)
        return identity

    async def _adopt(self, identity: Identity) -> None:
        self.current = identity
        self._cache.save(
            CachedIdentity.from_identity(identity).model_dump_json(),
            identity.external_id,
        )
        await self._set_online(identity, True)

    async def _set_online(self, identity: Identity, online: bool) -> None:
        now = utcnow()
        identity.is_online = online
        identity.last_seen = now
        try:
            await self._store.update(
                USERS, identity.id, {"is_online": online, "last_seen": now},
            )
        except StoreError as exc:
            logger.error("Failed to mark %s %s: %s", identity.id,
                         "online" if online else "offline", exc)
