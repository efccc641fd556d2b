from __future__ import annotations

from enum import Enum


class PipelineKind(str, Enum):
    """Тип пайплайна; в БД хранится односимвольным кодом."""

    SEQUENCE_RANGE = "s"
    TIME_INTERVAL = "t"
    FILE_LIST = "f"


class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
