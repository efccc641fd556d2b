from __future__ import annotations

import logging
from typing import Sequence
from uuid import uuid4

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.core.enums import RunStatus
from src.app.models import PipelineRun
from src.runner.services.identity import elevated
from src.runner.services.time_utils import utcnow

logger = logging.getLogger("incremental_runner")


class RunsRepo:
    """История запусков. Каждая запись коммитится отдельно от юнитов пайплайна."""

    async def start_run(
            self,
            session: AsyncSession,
            *,
            pipeline_name: str) -> str:
        run_id = str(uuid4())
        with elevated():
            stmt = insert(PipelineRun).values(
                id=run_id,
                pipeline_name=pipeline_name,
                status=RunStatus.RUNNING.value,
                started_at=utcnow(),
                units_processed=0,
                items_processed=0,
            )
            await session.execute(stmt)
        await session.commit()
        logger.info("Started run id=%s pipeline=%s", run_id, pipeline_name)
        return run_id

    async def finish_success(
        self,
        session: AsyncSession,
        *,
        run_id: str,
        units_processed: int,
        items_processed: int,
    ) -> None:
        with elevated():
            stmt = (
                update(PipelineRun)
                .where(PipelineRun.id == run_id)
                .values(
                    status=RunStatus.SUCCESS.value,
                    finished_at=utcnow(),
                    units_processed=units_processed,
                    items_processed=items_processed,
                )
            )
            await session.execute(stmt)
        await session.commit()
        logger.info("Finished run id=%s SUCCESS (units=%d items=%d)",
                    run_id, units_processed, items_processed)

    async def finish_failed(
        self,
        session: AsyncSession,
        *,
        run_id: str,
        units_processed: int,
        items_processed: int,
        error_message: str,
    ) -> None:
        with elevated():
            stmt = (
                update(PipelineRun)
                .where(PipelineRun.id == run_id)
                .values(
                    status=RunStatus.FAILED.value,
                    finished_at=utcnow(),
                    units_processed=units_processed,
                    items_processed=items_processed,
                    error_message=error_message[:1000],
                )
            )
            await session.execute(stmt)
        await session.commit()
        logger.error("Run id=%s FAILED: %s", run_id, error_message[:300])

    async def list_runs(
        self,
        session: AsyncSession,
        pipeline_name: str,
        limit: int = 50,
    ) -> Sequence[PipelineRun]:
        with elevated():
            stmt = (
                select(PipelineRun)
                .where(PipelineRun.pipeline_name == pipeline_name)
                .order_by(PipelineRun.started_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return result.scalars().all()
