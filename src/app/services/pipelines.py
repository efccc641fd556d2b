from __future__ import annotations

from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from src.app.models import Pipeline, PipelineRun
from src.app.schemas.pipelines import (
    FileListPipelineCreate,
    SequencePipelineCreate,
    TimeIntervalPipelineCreate,
)
from src.runner.orchestration.executor import ExecutionResult
from src.runner.orchestration.lifecycle import PipelineLifecycle
from src.runner.services.identity import Principal, acting_as


class PipelinesService:
    """Сервисный слой API: вызывает lifecycle от имени пользователя из запроса."""

    def __init__(
        self,
        session: AsyncSession,
        principal: Principal,
        lifecycle: PipelineLifecycle | None = None,
    ) -> None:
        self.session = session
        self.principal = principal
        self.lifecycle = lifecycle or PipelineLifecycle()

    # ---------- чтение ----------

    async def list_pipelines(self) -> Sequence[Pipeline]:
        with acting_as(self.principal):
            return await self.lifecycle.list_pipelines(self.session)

    async def get_pipeline(self, name: str) -> Pipeline:
        """Вернуть пайплайн с checkpoint или бросить PipelineNotFoundError."""
        with acting_as(self.principal):
            return await self.lifecycle.get_pipeline(self.session, name)

    async def list_pipeline_runs(self, name: str, limit: int) -> Sequence[PipelineRun]:
        with acting_as(self.principal):
            return await self.lifecycle.list_runs(self.session, name, limit=limit)

    # ---------- создание ----------

    async def create_sequence_pipeline(self, payload: SequencePipelineCreate) -> Pipeline:
        with acting_as(self.principal):
            await self.lifecycle.create_sequence_pipeline(
                self.session,
                name=payload.name,
                source=payload.source,
                command=payload.command,
                schedule=payload.schedule,
                execute_immediately=payload.execute_immediately,
            )
            return await self.lifecycle.get_pipeline(self.session, payload.name)

    async def create_time_interval_pipeline(self, payload: TimeIntervalPipelineCreate) -> Pipeline:
        with acting_as(self.principal):
            await self.lifecycle.create_time_interval_pipeline(
                self.session,
                name=payload.name,
                time_interval=payload.time_interval,
                command=payload.command,
                min_delay=payload.min_delay,
                batched=payload.batched,
                start_time=payload.start_time,
                source=payload.source,
                schedule=payload.schedule,
                execute_immediately=payload.execute_immediately,
            )
            return await self.lifecycle.get_pipeline(self.session, payload.name)

    async def create_file_list_pipeline(self, payload: FileListPipelineCreate) -> Pipeline:
        with acting_as(self.principal):
            await self.lifecycle.create_file_list_pipeline(
                self.session,
                name=payload.name,
                file_pattern=payload.file_pattern,
                command=payload.command,
                batched=payload.batched,
                list_function=payload.list_function,
                schedule=payload.schedule,
                max_batch_size=payload.max_batch_size,
                execute_immediately=payload.execute_immediately,
            )
            return await self.lifecycle.get_pipeline(self.session, payload.name)

    # ---------- управление ----------

    async def execute_pipeline(self, name: str) -> ExecutionResult:
        with acting_as(self.principal):
            return await self.lifecycle.execute_pipeline(self.session, name)

    async def reset_pipeline(self, name: str) -> None:
        with acting_as(self.principal):
            await self.lifecycle.reset_pipeline(self.session, name)

    async def drop_pipeline(self, name: str) -> None:
        with acting_as(self.principal):
            await self.lifecycle.drop_pipeline(self.session, name)

    async def sequence_range(self, name: str) -> tuple[int, int] | None:
        with acting_as(self.principal):
            return await self.lifecycle.sequence_range(self.session, name)
