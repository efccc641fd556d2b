from __future__ import annotations

from .enums import PipelineKind, RunStatus
from .constants import CRON_JOB_PREFIX, SCHEMA

__all__ = [
    "PipelineKind",
    "RunStatus",
    "CRON_JOB_PREFIX",
    "SCHEMA",
]
