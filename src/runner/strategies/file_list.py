from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace

from sqlalchemy.ext.asyncio import AsyncSession

from src.app.core.enums import PipelineKind
from src.runner.ports.pipeline import PipelineLike
from src.runner.repos.file_list import FileListRepo
from src.runner.strategies.base import Delta, FileBatch, Unit

logger = logging.getLogger("incremental_runner")


def chunk_items(items: Sequence[str], max_batch_size: int | None) -> list[tuple[str, ...]]:
    """Нарезать дельту на батчи по max_batch_size, сохраняя порядок.

    None или <= 0 -> один батч на всю дельту.
    """
    if not items:
        return []
    if not max_batch_size or max_batch_size <= 0:
        return [tuple(items)]

    return [
        tuple(items[offset:offset + max_batch_size])
        for offset in range(0, len(items), max_batch_size)
    ]


def _unique(paths: Sequence[str]) -> list[str]:
    # листинг может вернуть путь дважды, а в лог его можно записать только раз
    return list(dict.fromkeys(paths))


class FileListStrategy:
    kind = PipelineKind.FILE_LIST

    def __init__(self, repo: FileListRepo | None = None) -> None:
        self._repo = repo or FileListRepo()

    async def compute_delta(self, session: AsyncSession, pipeline: PipelineLike) -> Delta:
        state = await self._repo.lock_state(session, pipeline.name)

        paths = _unique(
            await self._repo.list_unprocessed(
                session,
                pipeline.name,
                list_function=state.list_function,
                file_pattern=state.file_pattern,
            )
        )
        if not paths:
            return Delta(empty_message="no files to process")

        if state.batched:
            units = tuple(
                FileBatch(paths=chunk, batched=True)
                for chunk in chunk_items(paths, state.max_batch_size)
            )
        else:
            units = tuple(FileBatch(paths=(p,), batched=False) for p in paths)

        logger.info(
            "pipeline %s: %d unprocessed file(s) in %d unit(s) (batched=%s max_batch_size=%s)",
            pipeline.name, len(paths), len(units), state.batched, state.max_batch_size,
        )
        return Delta(units=units)

    async def relock(self, session: AsyncSession, pipeline_name: str, unit: Unit) -> Unit | None:
        assert isinstance(unit, FileBatch)
        await self._repo.lock_state(session, pipeline_name)

        already = await self._repo.processed_among(session, pipeline_name, unit.paths)
        if not already:
            return unit

        remaining = tuple(p for p in unit.paths if p not in already)
        logger.warning(
            "pipeline %s: %d file(s) already processed by a concurrent run, skipping them",
            pipeline_name, len(unit.paths) - len(remaining),
        )
        if not remaining:
            return None
        return replace(unit, paths=remaining)

    async def advance(self, session: AsyncSession, pipeline_name: str, unit: Unit) -> None:
        assert isinstance(unit, FileBatch)
        await self._repo.insert_processed(session, pipeline_name, unit.paths)

    async def reset(self, session: AsyncSession, pipeline_name: str) -> None:
        await self._repo.lock_state(session, pipeline_name)
        removed = await self._repo.remove_processed(session, pipeline_name)
        logger.info("pipeline %s: cleared %d processed file(s)", pipeline_name, removed)
