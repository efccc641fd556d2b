from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from .base import Base


class FileListPipelineState(Base):
    """Настройки file-list-пайплайна (incremental.file_list_pipelines)."""

    __tablename__ = "file_list_pipelines"

    pipeline_name: Mapped[str] = mapped_column(
        Text,
        ForeignKey("incremental.pipelines.pipeline_name", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )

    file_pattern: Mapped[str] = mapped_column(Text, nullable=False)
    batched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # schema-qualified имя функции листинга, уже в кавычках
    list_function: Mapped[str] = mapped_column(Text, nullable=False)

    # NULL -> один батч на всю дельту
    max_batch_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    pipeline: Mapped["Pipeline"] = relationship(
        "Pipeline",
        back_populates="file_list_state",
    )


class ProcessedFile(Base):
    """Append-only лог обработанных файлов (incremental.processed_files)."""

    __tablename__ = "processed_files"

    pipeline_name: Mapped[str] = mapped_column(
        Text,
        ForeignKey("incremental.pipelines.pipeline_name", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    path: Mapped[str] = mapped_column(Text, primary_key=True)

    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
