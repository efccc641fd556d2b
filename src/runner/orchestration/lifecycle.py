from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.core.constants import (
    DEFAULT_FILE_LIST_SCHEDULE,
    DEFAULT_SEQUENCE_SCHEDULE,
    DEFAULT_TIME_INTERVAL_SCHEDULE,
    cron_command,
    cron_job_name,
    param_types_for,
)
from src.app.core.enums import PipelineKind
from src.app.core.exceptions import (
    InvalidArgumentError,
    PipelineAlreadyExistsError,
    UnresolvedEnumeratorError,
    UnsupportedSourceError,
)
from src.app.models import Pipeline, PipelineRun
from src.config import Settings, get_settings
from src.runner.adapters.command_runner import SqlCommandRunner
from src.runner.adapters.command_validator import PostgresCommandValidator
from src.runner.adapters.scheduler import DatabaseScheduler
from src.runner.orchestration.executor import ExecutionResult, PipelineExecutor
from src.runner.ports.command import CommandValidator
from src.runner.ports.scheduler import Scheduler
from src.runner.repos.catalog import SEQUENCE_RELKIND, TABLE_RELKINDS, CatalogRepo
from src.runner.repos.file_list import FileListRepo
from src.runner.repos.pipelines import PipelinesRepo
from src.runner.repos.runs import RunsRepo
from src.runner.repos.sequence import SequenceRepo
from src.runner.repos.time_interval import TimeIntervalRepo
from src.runner.services.db_errors import is_db_disconnect
from src.runner.services.identity import current_principal
from src.runner.services.ownership import ensure_pipeline_owner
from src.runner.services.pipeline_snapshot import PipelineDescriptor, snapshot_pipeline
from src.runner.services.time_utils import as_utc
from src.runner.strategies import (
    DeltaStrategies,
    FileListStrategy,
    SequenceRangeStrategy,
    TimeIntervalStrategy,
)

logger = logging.getLogger("incremental_runner")

StateInit = Callable[[AsyncSession], Awaitable[None]]


def _require(value, field: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidArgumentError(f"{field} cannot be NULL")


class PipelineLifecycle:
    """Публичные операции над пайплайнами: create / execute / reset / drop.

    Вызывающий берётся из текущего контекста (acting_as). Служебные таблицы
    читаются и пишутся репозиториями внутри elevated(), команда пайплайна
    выполняется уже под вызывающим.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        pipelines: PipelinesRepo | None = None,
        sequences: SequenceRepo | None = None,
        time_intervals: TimeIntervalRepo | None = None,
        file_lists: FileListRepo | None = None,
        catalog: CatalogRepo | None = None,
        runs: RunsRepo | None = None,
        validator: CommandValidator | None = None,
        scheduler: Scheduler | None = None,
        executor: PipelineExecutor | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._pipelines = pipelines or PipelinesRepo()
        self._sequences = sequences or SequenceRepo()
        self._time_intervals = time_intervals or TimeIntervalRepo()
        self._file_lists = file_lists or FileListRepo()
        self._catalog = catalog or CatalogRepo()
        self._runs = runs or RunsRepo()
        self._validator = validator or PostgresCommandValidator()
        self._scheduler = scheduler or DatabaseScheduler()

        self._strategies = DeltaStrategies(
            sequence=SequenceRangeStrategy(
                self._sequences,
                self._catalog,
                wait_for_writers=self._settings.sequence_wait_for_writers,
            ),
            time_interval=TimeIntervalStrategy(self._time_intervals),
            file_list=FileListStrategy(self._file_lists),
        )
        self._executor = executor or PipelineExecutor(
            runs=self._runs,
            commands=SqlCommandRunner(),
            strategies=self._strategies,
        )

    # --- create ---

    async def create_sequence_pipeline(
        self,
        session: AsyncSession,
        *,
        name: str,
        source: str,
        command: str,
        schedule: str | None = DEFAULT_SEQUENCE_SCHEDULE,
        execute_immediately: bool = False,
    ) -> PipelineDescriptor:
        _require(name, "pipeline_name")
        _require(source, "sequence_name")
        _require(command, "command")
        if schedule is not None:
            self._scheduler.validate(schedule)

        table, sequence = await self._resolve_sequence_source(session, source)
        canonical = await self._validator.validate(
            session, command, param_types_for(PipelineKind.SEQUENCE_RANGE)
        )

        async def init_state(s: AsyncSession) -> None:
            await self._sequences.insert_state(s, pipeline_name=name, sequence_name=sequence)

        return await self._register(
            session,
            name=name,
            kind=PipelineKind.SEQUENCE_RANGE,
            source_relation=table,
            command=canonical,
            init_state=init_state,
            schedule=schedule,
            execute_immediately=execute_immediately,
        )

    async def create_time_interval_pipeline(
        self,
        session: AsyncSession,
        *,
        name: str,
        time_interval: timedelta,
        command: str,
        min_delay: timedelta,
        batched: bool = False,
        start_time: datetime | None = None,
        source: str | None = None,
        schedule: str | None = DEFAULT_TIME_INTERVAL_SCHEDULE,
        execute_immediately: bool = False,
    ) -> PipelineDescriptor:
        _require(name, "pipeline_name")
        _require(time_interval, "time_interval")
        _require(command, "command")
        _require(min_delay, "min_delay")

        if time_interval <= timedelta(0):
            raise InvalidArgumentError("time_interval must be positive")
        if not batched and start_time is None:
            raise InvalidArgumentError(
                "start_time is required for non-batched pipelines",
                detail="Non-batched pipelines are executed for every interval "
                       "starting from the start_time",
            )
        if schedule is not None:
            self._scheduler.validate(schedule)

        start_time = as_utc(start_time)

        source_relation = None
        if source is not None:
            source_relation = await self._resolve_table_source(session, source)

        canonical = await self._validator.validate(
            session, command, param_types_for(PipelineKind.TIME_INTERVAL)
        )

        async def init_state(s: AsyncSession) -> None:
            await self._time_intervals.insert_state(
                s,
                pipeline_name=name,
                time_interval=time_interval,
                batched=batched,
                start_time=start_time,
                min_delay=min_delay,
            )

        return await self._register(
            session,
            name=name,
            kind=PipelineKind.TIME_INTERVAL,
            source_relation=source_relation,
            command=canonical,
            init_state=init_state,
            schedule=schedule,
            execute_immediately=execute_immediately,
        )

    async def create_file_list_pipeline(
        self,
        session: AsyncSession,
        *,
        name: str,
        file_pattern: str,
        command: str,
        batched: bool = False,
        list_function: str | None = None,
        schedule: str | None = DEFAULT_FILE_LIST_SCHEDULE,
        max_batch_size: int | None = None,
        execute_immediately: bool = False,
    ) -> PipelineDescriptor:
        _require(name, "pipeline_name")
        _require(file_pattern, "file_pattern")
        _require(command, "command")
        if schedule is not None:
            self._scheduler.validate(schedule)

        resolved = await self._resolve_list_function(
            session, list_function or self._settings.default_file_list_function
        )
        canonical = await self._validator.validate(
            session, command, param_types_for(PipelineKind.FILE_LIST, batched=batched)
        )

        async def init_state(s: AsyncSession) -> None:
            await self._file_lists.insert_state(
                s,
                pipeline_name=name,
                file_pattern=file_pattern,
                batched=batched,
                list_function=resolved,
                max_batch_size=max_batch_size,
            )

        return await self._register(
            session,
            name=name,
            kind=PipelineKind.FILE_LIST,
            source_relation=None,
            command=canonical,
            init_state=init_state,
            schedule=schedule,
            execute_immediately=execute_immediately,
        )

    async def initialize_file_list_state(
        self,
        session: AsyncSession,
        *,
        name: str,
        file_pattern: str,
        batched: bool = False,
        list_function: str | None = None,
        max_batch_size: int | None = None,
    ) -> None:
        """Вставить checkpoint для уже зарегистрированного file-list-пайплайна."""
        _require(name, "pipeline_name")
        _require(file_pattern, "file_pattern")

        pipeline = snapshot_pipeline(await self._pipelines.read(session, name))
        ensure_pipeline_owner(pipeline, current_principal())
        if pipeline.kind is not PipelineKind.FILE_LIST:
            raise InvalidArgumentError(f"pipeline {name} is not a file list pipeline")

        resolved = await self._resolve_list_function(
            session, list_function or self._settings.default_file_list_function
        )
        try:
            await self._file_lists.insert_state(
                session,
                pipeline_name=name,
                file_pattern=file_pattern,
                batched=batched,
                list_function=resolved,
                max_batch_size=max_batch_size,
            )
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            raise PipelineAlreadyExistsError(
                f"file list state for pipeline {name} already exists"
            ) from exc

    # --- run / reset / drop ---

    async def execute_pipeline(self, session: AsyncSession, name: str) -> ExecutionResult:
        pipeline = snapshot_pipeline(await self._pipelines.read(session, name))
        ensure_pipeline_owner(pipeline, current_principal())
        return await self._executor.execute(session, pipeline)

    async def reset_pipeline(self, session: AsyncSession, name: str) -> None:
        pipeline = snapshot_pipeline(await self._pipelines.read(session, name))
        ensure_pipeline_owner(pipeline, current_principal())

        strategy = self._strategies.for_kind(pipeline.kind)
        await strategy.reset(session, pipeline.name)
        await session.commit()

    async def drop_pipeline(self, session: AsyncSession, name: str) -> None:
        pipeline = snapshot_pipeline(await self._pipelines.read(session, name))
        ensure_pipeline_owner(pipeline, current_principal())

        job_name = cron_job_name(pipeline.name)
        if not await self._scheduler.unschedule(session, job_name):
            logger.info("pipeline %s: no cron job %s to remove", pipeline.name, job_name)

        await self._pipelines.delete(session, pipeline.name)
        await session.commit()
        logger.info("pipeline %s: dropped", pipeline.name)

    # --- read-only ---

    async def sequence_range(self, session: AsyncSession, name: str) -> tuple[int, int] | None:
        """Диапазон sequence-значений, который сейчас безопасно обработать.

        Checkpoint не двигается: блокировка строки отпускается rollback-ом.
        None, если новых значений нет.
        """
        pipeline = snapshot_pipeline(await self._pipelines.read(session, name))
        ensure_pipeline_owner(pipeline, current_principal())
        if pipeline.kind is not PipelineKind.SEQUENCE_RANGE:
            raise InvalidArgumentError(f"pipeline {name} is not a sequence pipeline")

        strategy = self._strategies.for_kind(pipeline.kind)
        try:
            delta = await strategy.compute_delta(session, pipeline)
        finally:
            await session.rollback()

        if not delta:
            return None
        unit = delta.units[0]
        return unit.low, unit.high

    async def get_pipeline(self, session: AsyncSession, name: str) -> Pipeline:
        return await self._pipelines.read_with_state(session, name)

    async def list_pipelines(self, session: AsyncSession) -> list[Pipeline]:
        return await self._pipelines.list_all(session)

    async def list_runs(
        self,
        session: AsyncSession,
        name: str,
        limit: int = 50,
    ) -> Sequence[PipelineRun]:
        await self._pipelines.read(session, name)
        return await self._runs.list_runs(session, name, limit=limit)

    # --- internals ---

    async def _register(
        self,
        session: AsyncSession,
        *,
        name: str,
        kind: PipelineKind,
        source_relation: str | None,
        command: str,
        init_state: StateInit,
        schedule: str | None,
        execute_immediately: bool,
    ) -> PipelineDescriptor:
        principal = current_principal()
        job_id: int | None = None

        try:
            row = await self._pipelines.create(
                session,
                name=name,
                kind=kind,
                owner_id=principal.id,
                source_relation=source_relation,
                command=command,
            )
            descriptor = snapshot_pipeline(row)
            await init_state(session)

            # расписание регистрируется в той же транзакции, что и описание
            if schedule is not None:
                job_id = await self._scheduler.schedule(
                    session,
                    job_name=cron_job_name(name),
                    cron=schedule,
                    command=cron_command(name),
                    pipeline_name=name,
                    owner_id=principal.id,
                )
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            raise PipelineAlreadyExistsError(f"pipeline {name} already exists") from exc
        except Exception as exc:
            if not is_db_disconnect(exc):
                await session.rollback()
            raise

        logger.info("pipeline %s: created (kind=%s owner=%s)", name, kind.name, principal.id)
        if job_id is not None:
            logger.info(
                "pipeline %s: scheduled cron job with ID %d and schedule %s",
                name, job_id, schedule,
            )

        if execute_immediately:
            await self._executor.execute(session, descriptor)

        return descriptor

    async def _resolve_sequence_source(self, session: AsyncSession, ref: str) -> tuple[str, str]:
        """(source table, sequence) по имени sequence или таблицы."""
        rel = await self._catalog.relation(session, ref)
        if rel is None:
            raise UnsupportedSourceError(f'relation "{ref}" does not exist')

        if rel.relkind == SEQUENCE_RELKIND:
            table = await self._catalog.owning_table(session, rel.name)
            if table is None:
                raise UnsupportedSourceError(
                    "only sequences that are owned by a table are supported"
                )
            return table, rel.name

        if rel.relkind in TABLE_RELKINDS:
            sequences = await self._catalog.owned_sequences(session, rel.name)
            if len(sequences) != 1:
                raise UnsupportedSourceError(
                    f"table {rel.name} must have exactly one owned sequence, found {len(sequences)}"
                )
            return rel.name, sequences[0]

        raise UnsupportedSourceError(f"{rel.name} is not a table or sequence")

    async def _resolve_table_source(self, session: AsyncSession, ref: str) -> str:
        rel = await self._catalog.relation(session, ref)
        if rel is None:
            raise UnsupportedSourceError(f'relation "{ref}" does not exist')
        if rel.relkind not in TABLE_RELKINDS:
            raise UnsupportedSourceError(f"{rel.name} is not a table")
        return rel.name

    async def _resolve_list_function(self, session: AsyncSession, name: str) -> str:
        resolved = await self._catalog.resolve_list_function(session, name)
        if resolved is None:
            raise UnresolvedEnumeratorError(f"function {name}(text) does not exist")
        return resolved
