from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from src.app.core.exceptions import PipelineError
from src.config import Settings, get_settings
from src.runner.adapters.scheduler import DatabaseScheduler
from src.runner.orchestration.lifecycle import PipelineLifecycle
from src.runner.ports.scheduler import Scheduler
from src.runner.services.db_errors import is_db_disconnect
from src.runner.services.identity import acting_as, build_principal
from src.runner.services.time_utils import utcnow

logger = logging.getLogger("incremental_runner")


@dataclass(frozen=True, slots=True)
class TickResult:
    jobs_due: int
    jobs_claimed: int
    jobs_failed: int


class SchedulerManager:
    """Оркестратор одного 'тика' раннера: найти due-задачи и выполнить каждую в fresh-сессии."""

    def __init__(
        self,
        session_factory,
        *,
        settings: Settings | None = None,
        scheduler: Scheduler | None = None,
        lifecycle: PipelineLifecycle | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._scheduler = scheduler or DatabaseScheduler()
        self._lifecycle = lifecycle or PipelineLifecycle(
            settings=self._settings,
            scheduler=self._scheduler,
        )
        self._clock = clock

    async def tick(self) -> TickResult:
        now = self._clock()

        # 1) одной сессией получаем due-задачи
        async with self._session_factory() as session:  # type: AsyncSession
            jobs = await self._scheduler.due(session, now)

        if not jobs:
            logger.debug("No scheduled pipelines due at %s", now.isoformat())
            return TickResult(jobs_due=0, jobs_claimed=0, jobs_failed=0)

        logger.info("Found %d due job(s)", len(jobs))

        claimed = 0
        failed = 0

        # 2) каждая задача в своей fresh-сессии
        for job in jobs:
            async with self._session_factory() as session:  # type: AsyncSession
                if not await self._scheduler.claim(session, job, now):
                    logger.info("Skip job %s: already claimed by another runner", job.job_name)
                    continue
                claimed += 1

                principal = build_principal(job.owner_id, superusers=self._settings.superusers)
                try:
                    with acting_as(principal):
                        result = await self._lifecycle.execute_pipeline(session, job.pipeline_name)
                    logger.info(
                        "Job %s done: units=%d items=%d",
                        job.job_name, result.units_processed, result.items_processed,
                    )
                except Exception as exc:
                    if is_db_disconnect(exc):
                        raise
                    failed += 1
                    if isinstance(exc, PipelineError):
                        logger.error("Job %s failed: %s", job.job_name, exc)
                    else:
                        logger.exception("Unexpected error while running job %s", job.job_name)

        return TickResult(jobs_due=len(jobs), jobs_claimed=claimed, jobs_failed=failed)
