"""Reaper entry points outside the request cycle.

- run_sweep(): one sweep in its own session (cron, CLI).
- reaper_loop(): periodic sweeps inside the API process when REAPER_ENABLED.

Run from cron with: python -m videorelay.services.reaper
"""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from videorelay.services import lifecycle_service
from videorelay.services.lifecycle_service import SweepResult
from videorelay.services.storage import StorageBackend, get_storage

logger = logging.getLogger("videorelay.reaper")


async def run_sweep(
    session_factory: async_sessionmaker[AsyncSession],
    storage: StorageBackend | None = None,
) -> SweepResult:
    storage = storage or get_storage()
    async with session_factory() as db:
        result = await lifecycle_service.sweep(db, storage)
        await db.commit()
    return result


async def reaper_loop(
    session_factory: async_sessionmaker[AsyncSession],
    interval_hours: float,
    storage: StorageBackend | None = None,
) -> None:
    interval = interval_hours * 3600
    logger.info("Reaper loop started (every %.1f hours)", interval_hours)
    while True:
        try:
            await run_sweep(session_factory, storage)
        except Exception:
            logger.exception("Scheduled cleanup failed")
        await asyncio.sleep(interval)


def main() -> None:
    from videorelay.config import settings
    from videorelay.core.logging_config import configure_logging
    from videorelay.dependencies import async_session_factory, engine

    configure_logging(settings.log_level)

    async def _run() -> SweepResult:
        try:
            return await run_sweep(async_session_factory)
        finally:
            await engine.dispose()

    result = asyncio.run(_run())
    logger.info("Cleanup finished: %d deleted, %d failed", result.deleted, result.failed)
    for error in result.errors:
        logger.error("Cleanup error: %s", error)


if __name__ == "__main__":
    main()
