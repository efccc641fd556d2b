from __future__ import annotations

import asyncio
import logging
from typing import NoReturn

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from infra.db import async_session_factory
from src.config import get_settings
from src.runner.orchestration.manager import SchedulerManager
from src.runner.services.db_errors import is_db_disconnect

logger = logging.getLogger("incremental_runner")


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] [runner] %(message)s",
    )


async def _check_db_connection() -> None:
    """
    Быстрый ping БД. Важно: создаём/закрываем сессию внутри, чтобы не держать "битую".
    """
    async with async_session_factory() as session:  # type: AsyncSession
        result = await session.execute(text("SELECT 1"))
        _ = result.scalar_one()


async def wait_for_db(
    *,
    attempts: int = 10,
    delays: tuple[float, ...] = (1, 2, 4, 8, 8, 8, 8, 8, 8, 8),
) -> None:
    """
    Ждём пока БД поднимется. Если не поднялась за attempts, падаем.
    """
    last_exc: Exception | None = None

    for i in range(1, attempts + 1):
        try:
            await _check_db_connection()
            logger.info("DB connection OK")
            return
        except Exception as exc:
            last_exc = exc
            delay = delays[i - 1] if i - 1 < len(delays) else delays[-1]
            logger.warning("DB not ready (%d/%d). Retrying in %ss...", i, attempts, delay)
            await asyncio.sleep(delay)

    logger.error("DB did not become ready after %d attempts", attempts)
    raise last_exc  # type: ignore[misc]


async def main_loop() -> NoReturn:
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("Incremental runner starting up (env=%s)...", settings.app_env)

    # --- startup ---
    await wait_for_db()
    logger.info("Startup checks passed")

    poll_interval = settings.runner_poll_interval
    logger.info("Entering main loop with poll_interval=%s seconds", poll_interval)

    manager = SchedulerManager(async_session_factory, settings=settings)

    # --- main loop ---
    while True:
        try:
            await manager.tick()
        except Exception as exc:
            if is_db_disconnect(exc):
                logger.warning("DB disconnected during tick. Will retry next tick. err=%r", exc)
                await asyncio.sleep(1.0)
            else:
                logger.exception("Error during runner tick")
        await asyncio.sleep(poll_interval)


if __name__ == "__main__":
    asyncio.run(main_loop())
