"""
HiveTask — Application composition.

Builds one SessionContainer and one WorkspaceContainer per app session and
wires them together: workspace streams follow the signed-in identity, and a
deferred "join group" deep link runs once someone is signed in.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from hivetask.core.errors import MutationResult
from hivetask.core.invite_codes import normalize_invite_code
from hivetask.core.session import SessionContainer
from hivetask.core.workspace import WorkspaceContainer

if TYPE_CHECKING:
    from hivetask.config import Settings
    from hivetask.data.models import ExternalCredential, Identity, WorkspaceGroup
    from hivetask.ports.document_store import DocumentStore
    from hivetask.ports.identity_cache import IdentityCache

logger = logging.getLogger(__name__)


class HiveTaskApp:
    """Composition root handed to UI adapters by reference."""

    def __init__(
        self,
        store: DocumentStore,
        cache: IdentityCache,
        config: Settings | None = None,
    ) -> None:
        if config is None:
            from hivetask.config import settings as config

        self.store = store
        self.session = SessionContainer(
            store, cache, default_display_name=config.DEFAULT_DISPLAY_NAME,
        )
        self.workspace = WorkspaceContainer(
            store,
            self.session,
            invite_code_length=config.INVITE_CODE_LENGTH,
            notification_limit=config.NOTIFICATION_LIMIT,
        )
        self.pending_invite_code: str | None = None

    async def launch(self) -> Identity | None:
        """Resolve the cached session and, if signed in, go live."""
        identity = await self.session.resolve_existing_session()
        if identity is not None:
            await self._on_signed_in(identity)
        return identity

    async def sign_in(self, credential: ExternalCredential) -> MutationResult[Identity]:
        result = await self.session.sign_in(credential)
        if result.ok:
            await self._on_signed_in(result.value)
        return result

    async def sign_out(self) -> None:
        self.workspace.clear()
        await self.session.sign_out()

    async def handle_invite_link(
        self, code: str,
    ) -> MutationResult[WorkspaceGroup] | None:
        """Join by invite code now, or once an identity is signed in.

        Returns None when the join was deferred.
        """
        if not self.session.is_authenticated:
            self.pending_invite_code = normalize_invite_code(code)
            logger.info("Deferring invite %s until sign-in", self.pending_invite_code)
            return None
        return await self.workspace.join_group_by_invite_code(code)

    async def _on_signed_in(self, identity: Identity) -> None:
        await self.workspace.start_listening(identity)
        if self.pending_invite_code:
            code, self.pending_invite_code = self.pending_invite_code, None
            result = await self.workspace.join_group_by_invite_code(code)
            if not result.ok:
                logger.warning("Deferred invite %s failed: %s", code, result.message)

    async def close(self) -> None:
        self.workspace.stop_listening()
        await self.store.close()
