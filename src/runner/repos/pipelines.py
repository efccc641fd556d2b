from __future__ import annotations

from sqlalchemy import cast, delete, func, select
from sqlalchemy.dialects.postgresql import OID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.app.core.enums import PipelineKind
from src.app.core.exceptions import PipelineNotFoundError
from src.app.models import Pipeline
from src.runner.services.identity import elevated


class PipelinesRepo:
    """Реестр описаний пайплайнов (incremental.pipelines).

    Таблица служебная, поэтому каждый метод работает внутри elevated().
    Коммит делает вызывающий: вставка описания и начального checkpoint
    должны попасть в одну транзакцию.
    """

    async def create(
        self,
        session: AsyncSession,
        *,
        name: str,
        kind: PipelineKind,
        owner_id: str,
        source_relation: str | None,
        command: str,
    ) -> Pipeline:
        with elevated():
            pipeline = Pipeline(
                pipeline_name=name,
                pipeline_type=kind.value,
                owner_id=owner_id,
                source_relation=source_relation,
                command=command,
            )
            if source_relation is not None:
                pipeline.source_oid = cast(func.to_regclass(source_relation), OID)
            session.add(pipeline)
            # IntegrityError по дубликату имени всплывает здесь, а не на commit
            await session.flush()
            return pipeline

    async def read(self, session: AsyncSession, name: str) -> Pipeline:
        with elevated():
            stmt = select(Pipeline).where(Pipeline.pipeline_name == name)
            result = await session.execute(stmt)
            pipeline = result.scalar_one_or_none()

        if pipeline is None:
            raise PipelineNotFoundError(f'no such pipeline named "{name}"')

        return pipeline

    async def read_with_state(self, session: AsyncSession, name: str) -> Pipeline:
        """Описание вместе с checkpoint-строкой своего вида (для API)."""
        with elevated():
            stmt = (
                select(Pipeline)
                .where(Pipeline.pipeline_name == name)
                .options(
                    selectinload(Pipeline.sequence_state),
                    selectinload(Pipeline.time_interval_state),
                    selectinload(Pipeline.file_list_state),
                )
            )
            result = await session.execute(stmt)
            pipeline = result.scalar_one_or_none()

        if pipeline is None:
            raise PipelineNotFoundError(f'no such pipeline named "{name}"')

        return pipeline

    async def list_all(self, session: AsyncSession) -> list[Pipeline]:
        with elevated():
            stmt = select(Pipeline).order_by(Pipeline.pipeline_name)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def delete(self, session: AsyncSession, name: str) -> None:
        """Удалить описание; checkpoint, лог файлов и расписание удаляются каскадом."""
        with elevated():
            stmt = delete(Pipeline).where(Pipeline.pipeline_name == name)
            result = await session.execute(stmt)

        if (result.rowcount or 0) == 0:
            raise PipelineNotFoundError(f'no such pipeline named "{name}"')
