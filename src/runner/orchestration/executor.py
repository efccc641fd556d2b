from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from src.app.core.exceptions import ExecutionFailureError
from src.runner.ports.command import CommandRunner
from src.runner.ports.pipeline import PipelineLike
from src.runner.repos.runs import RunsRepo
from src.runner.services.db_errors import is_db_disconnect
from src.runner.services.logctx import ctx_prefix
from src.runner.strategies import DeltaStrategies

logger = logging.getLogger("incremental_runner")


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    units_processed: int
    items_processed: int

    @property
    def noop(self) -> bool:
        return self.units_processed == 0


class PipelineExecutor:
    """Один запуск пайплайна: дельта -> команда по юнитам -> checkpoint.

    Каждый юнит идёт отдельной транзакцией: команда и
    продвижение checkpoint коммитятся вместе. Падение юнита i откатывает
    только его; юниты 0..i-1 уже закоммичены.
    """

    def __init__(
        self,
        *,
        runs: RunsRepo,
        commands: CommandRunner,
        strategies: DeltaStrategies,
    ) -> None:
        self._runs = runs
        self._commands = commands
        self._strategies = strategies

    async def execute(self, session: AsyncSession, pipeline: PipelineLike) -> ExecutionResult:
        strategy = self._strategies.for_kind(pipeline.kind)
        run_id = await self._runs.start_run(session, pipeline_name=pipeline.name)
        ctx_str = ctx_prefix(pname=pipeline.name, kind=pipeline.kind.name, rid=run_id)

        units_done = 0
        items_done = 0

        try:
            delta = await strategy.compute_delta(session, pipeline)
        except Exception as exc:
            if is_db_disconnect(exc):
                raise
            await session.rollback()
            await self._runs.finish_failed(
                session,
                run_id=run_id,
                units_processed=0,
                items_processed=0,
                error_message=repr(exc),
            )
            raise

        if not delta:
            # пустая дельта не ошибка; commit отпускает блокировку
            await session.commit()
            logger.info("pipeline %s: %s", pipeline.name, delta.empty_message)
            await self._runs.finish_success(
                session, run_id=run_id, units_processed=0, items_processed=0
            )
            return ExecutionResult(units_processed=0, items_processed=0)

        logger.info("%s start units=%d items=%d", ctx_str, len(delta.units), delta.item_count)

        for index, planned in enumerate(delta.units):
            unit = planned
            try:
                if index > 0:
                    # блокировку отпустил commit предыдущего юнита
                    relocked = await strategy.relock(session, pipeline.name, planned)
                    if relocked is None:
                        await session.commit()
                        logger.info("%s skip %s: already processed", ctx_str, planned.describe())
                        continue
                    unit = relocked

                logger.info("pipeline %s: %s", pipeline.name, unit.progress())

                await self._commands.run(session, pipeline.command, unit.params())
                await strategy.advance(session, pipeline.name, unit)
                await session.commit()

            except Exception as exc:
                if is_db_disconnect(exc):
                    logger.warning(
                        "%s DB disconnected on %s; unit left unprocessed. err=%r",
                        ctx_str, unit.describe(), exc,
                    )
                    raise

                await session.rollback()
                await self._runs.finish_failed(
                    session,
                    run_id=run_id,
                    units_processed=units_done,
                    items_processed=items_done,
                    error_message=f"{unit.describe()}: {exc!r}",
                )
                raise ExecutionFailureError(pipeline.name, unit.describe(), repr(exc)) from exc

            units_done += 1
            items_done += unit.size
            logger.info(
                "%s unit %d/%d committed (items so far=%d)",
                ctx_str, index + 1, len(delta.units), items_done,
            )

        await self._runs.finish_success(
            session,
            run_id=run_id,
            units_processed=units_done,
            items_processed=items_done,
        )
        return ExecutionResult(units_processed=units_done, items_processed=items_done)
