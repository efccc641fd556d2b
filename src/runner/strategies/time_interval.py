from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from src.app.core.enums import PipelineKind
from src.runner.ports.pipeline import PipelineLike
from src.runner.repos.time_interval import TimeIntervalRepo
from src.runner.services.time_utils import utcnow
from src.runner.strategies.base import Delta, RangeUnit, Unit

logger = logging.getLogger("incremental_runner")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def eligible_intervals(
    *,
    origin: datetime,
    width: timedelta,
    min_delay: timedelta,
    now: datetime,
) -> list[tuple[datetime, datetime]]:
    """Интервалы [start, start + width), начиная с origin, у которых end + min_delay <= now."""
    if width <= timedelta(0):
        raise ValueError("time_interval must be positive")

    horizon = now - min_delay
    if horizon < origin + width:
        return []

    count = (horizon - origin) // width
    return [(origin + i * width, origin + (i + 1) * width) for i in range(count)]


def eligible_range(
    *,
    origin: datetime,
    width: timedelta,
    min_delay: timedelta,
    now: datetime,
) -> tuple[datetime, datetime] | None:
    """То же, одним диапазоном (batched): не материализует список интервалов."""
    if width <= timedelta(0):
        raise ValueError("time_interval must be positive")

    horizon = now - min_delay
    if horizon < origin + width:
        return None

    count = (horizon - origin) // width
    return origin, origin + count * width


class TimeIntervalStrategy:
    kind = PipelineKind.TIME_INTERVAL

    def __init__(self, repo: TimeIntervalRepo | None = None, *, clock=utcnow) -> None:
        self._repo = repo or TimeIntervalRepo()
        self._clock = clock

    async def compute_delta(self, session: AsyncSession, pipeline: PipelineLike) -> Delta:
        state = await self._repo.lock_state(session, pipeline.name)

        origin = state.last_processed_time or state.start_time or EPOCH
        now = self._clock()

        if state.batched:
            window = eligible_range(
                origin=origin,
                width=state.time_interval,
                min_delay=state.min_delay,
                now=now,
            )
            units: tuple[RangeUnit, ...] = (
                (RangeUnit(low=window[0], high=window[1]),) if window else ()
            )
        else:
            units = tuple(
                RangeUnit(low=start, high=end)
                for start, end in eligible_intervals(
                    origin=origin,
                    width=state.time_interval,
                    min_delay=state.min_delay,
                    now=now,
                )
            )

        if not units:
            return Delta(empty_message="no time intervals ready to process")

        logger.info(
            "pipeline %s: %d time unit(s) from %s to %s",
            pipeline.name, len(units), units[0].low, units[-1].high,
        )
        return Delta(units=units)

    async def relock(self, session: AsyncSession, pipeline_name: str, unit: Unit) -> Unit | None:
        assert isinstance(unit, RangeUnit)
        state = await self._repo.lock_state(session, pipeline_name)

        last = state.last_processed_time
        if last is not None and last >= unit.high:
            return None
        return unit

    async def advance(self, session: AsyncSession, pipeline_name: str, unit: Unit) -> None:
        assert isinstance(unit, RangeUnit)
        await self._repo.update_last_processed(session, pipeline_name, unit.high)

    async def reset(self, session: AsyncSession, pipeline_name: str) -> None:
        # NULL -> следующий запуск начнёт со start_time
        await self._repo.update_last_processed(session, pipeline_name, None)
        logger.info("pipeline %s: last processed time reset to start_time", pipeline_name)
