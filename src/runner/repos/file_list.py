from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import delete, insert, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.core.exceptions import PipelineNotFoundError
from src.app.models import FileListPipelineState, ProcessedFile
from src.runner.services.identity import elevated
from src.runner.services.sql_ident import validate_qualified_name


class FileListRepo:
    """Состояние file-list-пайплайнов и append-only лог processed_files."""

    async def insert_state(
        self,
        session: AsyncSession,
        *,
        pipeline_name: str,
        file_pattern: str,
        batched: bool,
        list_function: str,
        max_batch_size: int | None,
    ) -> None:
        with elevated():
            await session.execute(
                insert(FileListPipelineState).values(
                    pipeline_name=pipeline_name,
                    file_pattern=file_pattern,
                    batched=batched,
                    list_function=list_function,
                    # <= 0 -> без ограничения размера батча
                    max_batch_size=max_batch_size if max_batch_size and max_batch_size > 0 else None,
                )
            )

    async def lock_state(self, session: AsyncSession, pipeline_name: str) -> FileListPipelineState:
        """SELECT ... FOR UPDATE: второй параллельный запуск ждёт конца нашей транзакции."""
        with elevated():
            stmt = (
                select(FileListPipelineState)
                .where(FileListPipelineState.pipeline_name == pipeline_name)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            res = await session.execute(stmt)
            state = res.scalar_one_or_none()

        if state is None:
            raise PipelineNotFoundError(f'pipeline "{pipeline_name}" cannot be found')
        return state

    async def list_unprocessed(
        self,
        session: AsyncSession,
        pipeline_name: str,
        *,
        list_function: str,
        file_pattern: str,
    ) -> list[str]:
        # list_function попадает в f-string, поэтому повторно проверяем форму имени
        fn = validate_qualified_name(list_function, what="list_function")

        with elevated():
            res = await session.execute(
                text(
                    f"""
                    SELECT list.path
                      FROM {fn}(:pattern) WITH ORDINALITY AS list(path, ord)
                      LEFT JOIN incremental.processed_files proc
                        ON proc.pipeline_name = :pipeline_name
                       AND proc.path = list.path
                     WHERE proc.path IS NULL
                     ORDER BY list.ord
                    """
                ),
                {"pattern": file_pattern, "pipeline_name": pipeline_name},
            )
            return [str(row[0]) for row in res.all()]

    async def processed_among(
        self,
        session: AsyncSession,
        pipeline_name: str,
        paths: Sequence[str],
    ) -> set[str]:
        if not paths:
            return set()

        with elevated():
            res = await session.execute(
                select(ProcessedFile.path)
                .where(ProcessedFile.pipeline_name == pipeline_name)
                .where(ProcessedFile.path.in_(list(paths)))
            )
            return {row[0] for row in res.all()}

    async def insert_processed(
        self,
        session: AsyncSession,
        pipeline_name: str,
        paths: Sequence[str],
    ) -> None:
        if not paths:
            return

        with elevated():
            await session.execute(
                insert(ProcessedFile),
                [{"pipeline_name": pipeline_name, "path": p} for p in paths],
            )

    async def remove_processed(self, session: AsyncSession, pipeline_name: str) -> int:
        """Очистить лог пайплайна; ноль удалённых строк не считается ошибкой."""
        with elevated():
            res = await session.execute(
                delete(ProcessedFile).where(ProcessedFile.pipeline_name == pipeline_name)
            )
            return int(res.rowcount or 0)
