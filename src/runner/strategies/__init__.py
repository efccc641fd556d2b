from __future__ import annotations

from src.app.core.enums import PipelineKind

from .base import Delta, DeltaStrategy, FileBatch, RangeUnit, Unit
from .file_list import FileListStrategy, chunk_items
from .sequence import SequenceRangeStrategy
from .time_interval import TimeIntervalStrategy


class DeltaStrategies:
    """Закрытый набор стратегий по видам пайплайнов."""

    def __init__(
        self,
        *,
        sequence: DeltaStrategy,
        time_interval: DeltaStrategy,
        file_list: DeltaStrategy,
    ) -> None:
        self._sequence = sequence
        self._time_interval = time_interval
        self._file_list = file_list

    def for_kind(self, kind: PipelineKind) -> DeltaStrategy:
        if kind is PipelineKind.SEQUENCE_RANGE:
            return self._sequence
        if kind is PipelineKind.TIME_INTERVAL:
            return self._time_interval
        if kind is PipelineKind.FILE_LIST:
            return self._file_list
        raise AssertionError(f"unknown pipeline kind: {kind!r}")


__all__ = [
    "Delta",
    "DeltaStrategies",
    "DeltaStrategy",
    "FileBatch",
    "FileListStrategy",
    "RangeUnit",
    "SequenceRangeStrategy",
    "TimeIntervalStrategy",
    "Unit",
    "chunk_items",
]
