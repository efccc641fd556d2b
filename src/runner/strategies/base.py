from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Union

from sqlalchemy.ext.asyncio import AsyncSession

from src.app.core.enums import PipelineKind
from src.runner.ports.pipeline import PipelineLike


@dataclass(frozen=True, slots=True)
class FileBatch:
    """Один файл (batched=False) или батч файлов одним массивом."""

    paths: tuple[str, ...]
    batched: bool

    @property
    def size(self) -> int:
        return len(self.paths)

    def params(self) -> tuple[Any, ...]:
        if self.batched:
            return (list(self.paths),)
        return (self.paths[0],)

    def describe(self) -> str:
        if self.batched:
            return f"batch of {len(self.paths)} files starting at {self.paths[0]}"
        return f"file {self.paths[0]}"

    def progress(self) -> str:
        if self.batched:
            return f"processing file list pipeline for {len(self.paths)} files"
        return f"processing file list pipeline for {self.paths[0]}"


@dataclass(frozen=True, slots=True)
class RangeUnit:
    """Диапазон sequence-значений [low, high] или интервал времени [low, high)."""

    low: Any
    high: Any

    @property
    def size(self) -> int:
        return 1

    def params(self) -> tuple[Any, ...]:
        return (self.low, self.high)

    def describe(self) -> str:
        return f"range {self.low} .. {self.high}"

    def progress(self) -> str:
        return f"processing range {self.low} .. {self.high}"


Unit = Union[FileBatch, RangeUnit]


@dataclass(frozen=True, slots=True)
class Delta:
    """Необработанная часть источника на момент одного запуска. Не персистится."""

    units: tuple[Unit, ...] = ()
    empty_message: str = "nothing to process"

    def __bool__(self) -> bool:
        return bool(self.units)

    @property
    def item_count(self) -> int:
        return sum(u.size for u in self.units)


class DeltaStrategy(Protocol):
    kind: PipelineKind

    async def compute_delta(self, session: AsyncSession, pipeline: PipelineLike) -> Delta:
        """Взять эксклюзивную блокировку checkpoint и вернуть дельту."""
        ...

    async def relock(self, session: AsyncSession, pipeline_name: str, unit: Unit) -> Unit | None:
        """Снова взять блокировку после commit предыдущего юнита.

        Возвращает юнит без того, что уже учёл параллельный запуск, или None.
        """
        ...

    async def advance(self, session: AsyncSession, pipeline_name: str, unit: Unit) -> None:
        ...

    async def reset(self, session: AsyncSession, pipeline_name: str) -> None:
        ...
