"""
HiveTask — Entry Point.

`python main.py [INVITE_CODE]` restores the cached session, opens the live
workspace streams and, if given, joins the group behind INVITE_CODE.
"""

import asyncio
import logging
import sys

from hivetask.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from hivetask.adapters.store_factory import create_document_store
from hivetask.app import HiveTaskApp
from hivetask.data.db import SqliteIdentityCache

logger = logging.getLogger("hivetask")


async def run(invite_code: str | None = None) -> None:
    app = HiveTaskApp(create_document_store(), SqliteIdentityCache())
    try:
        identity = await app.launch()
        if invite_code:
            result = await app.handle_invite_link(invite_code)
            if result is not None and not result.ok:
                logger.warning("Join failed: %s", result.message)

        if identity is None:
            logger.info("Not signed in; sign in through the identity provider.")
            return

        # First snapshots arrive asynchronously.
        await asyncio.sleep(1)
        await app.workspace.drain()
        stats = app.workspace.stats()
        logger.info(
            "%s: %d tasks (%d pending, %d done) in %d groups, %d unread notifications",
            identity.name, stats.total, stats.pending, stats.completed,
            stats.groups, app.workspace.unread_count,
        )
    finally:
        await app.close()


def main() -> None:
    asyncio.run(run(sys.argv[1] if len(sys.argv) > 1 else None))


if __name__ == "__main__":
    main()
