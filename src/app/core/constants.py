from __future__ import annotations

from src.app.core.enums import PipelineKind

SCHEMA = "incremental"

CRON_JOB_PREFIX = "pipeline:"

DEFAULT_SEQUENCE_SCHEDULE = "*/5 * * * *"
DEFAULT_TIME_INTERVAL_SCHEDULE = "* * * * *"
DEFAULT_FILE_LIST_SCHEDULE = "*/15 * * * *"

# типы позиционных параметров команды ($1, $2) по виду пайплайна
SEQUENCE_PARAM_TYPES: tuple[str, ...] = ("bigint", "bigint")
TIME_INTERVAL_PARAM_TYPES: tuple[str, ...] = ("timestamptz", "timestamptz")
FILE_PARAM_TYPES: tuple[str, ...] = ("text",)
FILE_ARRAY_PARAM_TYPES: tuple[str, ...] = ("text[]",)


def param_types_for(kind: PipelineKind, *, batched: bool = False) -> tuple[str, ...]:
    if kind is PipelineKind.SEQUENCE_RANGE:
        return SEQUENCE_PARAM_TYPES
    if kind is PipelineKind.TIME_INTERVAL:
        return TIME_INTERVAL_PARAM_TYPES
    if kind is PipelineKind.FILE_LIST:
        return FILE_ARRAY_PARAM_TYPES if batched else FILE_PARAM_TYPES
    raise AssertionError(f"unknown pipeline kind: {kind!r}")


def cron_job_name(pipeline_name: str) -> str:
    return f"{CRON_JOB_PREFIX}{pipeline_name}"


def quote_literal(value: str) -> str:
    escaped = value.replace("'", "''")
    if "\\" in escaped:
        return "E'" + escaped.replace("\\", "\\\\") + "'"
    return f"'{escaped}'"


def cron_command(pipeline_name: str) -> str:
    return f"{SCHEMA}.execute_pipeline({quote_literal(pipeline_name)})"
