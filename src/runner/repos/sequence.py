from __future__ import annotations

from sqlalchemy import cast, func, insert, select, update
from sqlalchemy.dialects.postgresql import OID
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.core.exceptions import PipelineNotFoundError
from src.app.models import SequencePipelineState
from src.runner.services.identity import elevated


class SequenceRepo:
    async def insert_state(
        self,
        session: AsyncSession,
        *,
        pipeline_name: str,
        sequence_name: str,
    ) -> None:
        with elevated():
            await session.execute(
                insert(SequencePipelineState).values(
                    pipeline_name=pipeline_name,
                    sequence_name=sequence_name,
                    sequence_oid=cast(func.to_regclass(sequence_name), OID),
                    last_processed_sequence_number=0,
                )
            )

    async def lock_state(self, session: AsyncSession, pipeline_name: str) -> SequencePipelineState:
        with elevated():
            stmt = (
                select(SequencePipelineState)
                .where(SequencePipelineState.pipeline_name == pipeline_name)
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
        value: int,
    ) -> None:
        with elevated():
            res = await session.execute(
                update(SequencePipelineState)
                .where(SequencePipelineState.pipeline_name == pipeline_name)
                .values(last_processed_sequence_number=value, updated_at=func.now())
            )

        if (res.rowcount or 0) == 0:
            raise PipelineNotFoundError(f'pipeline "{pipeline_name}" cannot be found')
