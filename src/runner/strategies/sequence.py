from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.app.core.enums import PipelineKind
from src.runner.ports.pipeline import PipelineLike
from src.runner.repos.catalog import CatalogRepo
from src.runner.repos.sequence import SequenceRepo
from src.runner.strategies.base import Delta, RangeUnit, Unit

logger = logging.getLogger("incremental_runner")


class SequenceRangeStrategy:
    """Диапазоны sequence-значений: (last_processed + 1, текущее значение]."""

    kind = PipelineKind.SEQUENCE_RANGE

    def __init__(
        self,
        repo: SequenceRepo | None = None,
        catalog: CatalogRepo | None = None,
        *,
        wait_for_writers: bool = True,
    ) -> None:
        self._repo = repo or SequenceRepo()
        self._catalog = catalog or CatalogRepo()
        self._wait_for_writers = wait_for_writers

    async def compute_delta(self, session: AsyncSession, pipeline: PipelineLike) -> Delta:
        state = await self._repo.lock_state(session, pipeline.name)
        last = int(state.last_processed_sequence_number or 0)

        current = await self._catalog.sequence_last_value(session, state.sequence_name)
        if current is None or current <= last:
            return Delta(empty_message="no new sequence values to process")

        # значения до current уже выданы; ждём, пока их вставки закоммитятся
        if self._wait_for_writers and pipeline.source_relation:
            await self._catalog.wait_for_writers(session, pipeline.source_relation)

        logger.info(
            "pipeline %s: sequence range %d .. %d", pipeline.name, last + 1, current
        )
        return Delta(units=(RangeUnit(low=last + 1, high=current),))

    async def relock(self, session: AsyncSession, pipeline_name: str, unit: Unit) -> Unit | None:
        assert isinstance(unit, RangeUnit)
        state = await self._repo.lock_state(session, pipeline_name)
        last = int(state.last_processed_sequence_number or 0)

        if last >= unit.high:
            return None
        if last >= unit.low:
            return RangeUnit(low=last + 1, high=unit.high)
        return unit

    async def advance(self, session: AsyncSession, pipeline_name: str, unit: Unit) -> None:
        assert isinstance(unit, RangeUnit)
        await self._repo.update_last_processed(session, pipeline_name, int(unit.high))

    async def reset(self, session: AsyncSession, pipeline_name: str) -> None:
        await self._repo.update_last_processed(session, pipeline_name, 0)
        logger.info("pipeline %s: last processed sequence number reset to 0", pipeline_name)
