from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import CheckConstraint, DateTime, Text
from sqlalchemy.dialects.postgresql import OID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from .base import Base


class Pipeline(Base):
    """Описание пайплайна (incremental.pipelines)."""

    __tablename__ = "pipelines"
    __table_args__ = (
        CheckConstraint(
            "pipeline_type IN ('s', 't', 'f')",
            name="pipelines_type_check",
        ),
    )

    pipeline_name: Mapped[str] = mapped_column(Text, primary_key=True)

    # 's' sequence / 't' time interval / 'f' file list
    pipeline_type: Mapped[str] = mapped_column(Text, nullable=False, default="s")

    owner_id: Mapped[str] = mapped_column(Text, nullable=False)

    # regclass::text источника; для file list и time interval может быть NULL
    source_relation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # oid источника: по нему event trigger находит пайплайны удалённой таблицы
    source_oid: Mapped[Optional[int]] = mapped_column(OID, nullable=True)

    # канонизированная команда с параметрами $1 / $2
    command: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Relations
    sequence_state: Mapped[Optional["SequencePipelineState"]] = relationship(
        "SequencePipelineState",
        back_populates="pipeline",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    time_interval_state: Mapped[Optional["TimeIntervalPipelineState"]] = relationship(
        "TimeIntervalPipelineState",
        back_populates="pipeline",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    file_list_state: Mapped[Optional["FileListPipelineState"]] = relationship(
        "FileListPipelineState",
        back_populates="pipeline",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    runs: Mapped[List["PipelineRun"]] = relationship(
        "PipelineRun",
        back_populates="pipeline",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
