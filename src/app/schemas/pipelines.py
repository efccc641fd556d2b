from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.app.core.constants import (
    DEFAULT_FILE_LIST_SCHEDULE,
    DEFAULT_SEQUENCE_SCHEDULE,
    DEFAULT_TIME_INTERVAL_SCHEDULE,
)


def _check_cron(value: str | None) -> str | None:
    if value is None:
        return value
    if not croniter.is_valid(value):
        raise ValueError(f"invalid cron expression: {value!r}")
    return value


# ======================
#   Входные модели
# ======================

class PipelineCreateBase(BaseModel):
    """Общие поля для создания пайплайна любого вида."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    command: str = Field(min_length=1)
    # None -> без расписания
    schedule: str | None = None
    execute_immediately: bool = False

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name cannot be blank")
        return value

    @field_validator("schedule")
    @classmethod
    def _schedule_is_cron(cls, value: str | None) -> str | None:
        return _check_cron(value)


class SequencePipelineCreate(PipelineCreateBase):
    """Пайплайн по диапазонам sequence: команда получает $1 bigint, $2 bigint."""

    # имя sequence или таблицы с одной owned sequence
    source: str = Field(min_length=1)
    schedule: str | None = DEFAULT_SEQUENCE_SCHEDULE


class TimeIntervalPipelineCreate(PipelineCreateBase):
    """Пайплайн по интервалам времени: команда получает $1, $2 timestamptz."""

    time_interval: timedelta
    min_delay: timedelta
    batched: bool = False
    start_time: datetime | None = None
    source: str | None = None
    schedule: str | None = DEFAULT_TIME_INTERVAL_SCHEDULE

    @field_validator("time_interval")
    @classmethod
    def _interval_positive(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("time_interval must be positive")
        return value

    @field_validator("min_delay")
    @classmethod
    def _delay_not_negative(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError("min_delay cannot be negative")
        return value

    @model_validator(mode="after")
    def _start_time_for_non_batched(self) -> "TimeIntervalPipelineCreate":
        if not self.batched and self.start_time is None:
            raise ValueError("start_time is required for non-batched pipelines")
        return self


class FileListPipelineCreate(PipelineCreateBase):
    """Пайплайн по списку файлов: команда получает $1 text или $1 text[] (batched)."""

    file_pattern: str = Field(min_length=1)
    batched: bool = False
    # None -> функция по умолчанию из настроек
    list_function: str | None = None
    # None или <= 0 -> один батч на всю дельту
    max_batch_size: int | None = None
    schedule: str | None = DEFAULT_FILE_LIST_SCHEDULE

    @field_validator("max_batch_size")
    @classmethod
    def _non_positive_is_unbounded(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            return None
        return value


# ======================
#   Выходные модели
# ======================

class PipelineOut(BaseModel):
    """Описание пайплайна в ответе API."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    pipeline_name: str
    pipeline_type: str
    owner_id: str
    source_relation: str | None = None
    command: str
    created_at: datetime | None = None


class SequenceStateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    sequence_name: str
    last_processed_sequence_number: int


class TimeIntervalStateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    time_interval: timedelta
    batched: bool
    start_time: datetime | None = None
    min_delay: timedelta
    last_processed_time: datetime | None = None


class FileListStateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    file_pattern: str
    batched: bool
    list_function: str
    max_batch_size: int | None = None


class PipelineDetailOut(PipelineOut):
    """Описание + checkpoint своего вида (остальные поля None)."""

    sequence_state: SequenceStateOut | None = None
    time_interval_state: TimeIntervalStateOut | None = None
    file_list_state: FileListStateOut | None = None


class ExecutionOut(BaseModel):
    pipeline_name: str
    units_processed: int
    items_processed: int


class SequenceRangeOut(BaseModel):
    pipeline_name: str
    # оба None, если новых значений нет
    range_start: int | None = None
    range_end: int | None = None


class PipelineRunOut(BaseModel):
    """Модель для истории запусков пайплайна."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: UUID
    status: str
    started_at: datetime
    finished_at: datetime | None = None
    units_processed: int
    items_processed: int
    error_message: str | None = None
