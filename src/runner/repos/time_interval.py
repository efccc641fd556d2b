from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.core.exceptions import PipelineNotFoundError
from src.app.models import TimeIntervalPipelineState
from src.runner.services.identity import elevated


class TimeIntervalRepo:
    async def insert_state(
        self,
        session: AsyncSession,
        *,
        pipeline_name: str,
        time_interval: timedelta,
        batched: bool,
        start_time: datetime | None,
        min_delay: timedelta,
    ) -> None:
        with elevated():
            await session.execute(
                insert(TimeIntervalPipelineState).values(
                    pipeline_name=pipeline_name,
                    time_interval=time_interval,
                    batched=batched,
                    start_time=start_time,
                    min_delay=min_delay,
                    last_processed_time=None,
                )
            )

    async def lock_state(
        self,
        session: AsyncSession,
        pipeline_name: str,
    ) -> TimeIntervalPipelineState:
        with elevated():
            stmt = (
                select(TimeIntervalPipelineState)
                .where(TimeIntervalPipelineState.pipeline_name == pipeline_name)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            res = await session.execute(stmt)
            state = res.scalar_one_or_none()

        if state is None:
            raise PipelineNotFoundError(f'pipeline "{pipeline_name}" cannot be found')
        return state

    async def update_last_processed(
        self,
        session: AsyncSession,
        pipeline_name: str,
        value: datetime | None,
    ) -> None:
        with elevated():
            res = await session.execute(
                update(TimeIntervalPipelineState)
                .where(TimeIntervalPipelineState.pipeline_name == pipeline_name)
                .values(last_processed_time=value, updated_at=func.now())
            )

        if (res.rowcount or 0) == 0:
            raise PipelineNotFoundError(f'pipeline "{pipeline_name}" cannot be found')
