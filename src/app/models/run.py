from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from src.app.core.enums import RunStatus
from .base import Base


class PipelineRun(Base):
    """История запусков (incremental.pipeline_runs)."""

    __tablename__ = "pipeline_runs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('RUNNING', 'SUCCESS', 'FAILED')",
            name="pipeline_runs_status_check",
        ),
    )

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        server_default=func.gen_random_uuid(),
    )

    pipeline_name: Mapped[str] = mapped_column(
        Text,
        ForeignKey("incremental.pipelines.pipeline_name", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # юниты = файлы / батчи / диапазоны, переданные команде
    units_processed: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    items_processed: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # "RUNNING" / "SUCCESS" / "FAILED"
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=RunStatus.RUNNING.value,
    )

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    pipeline: Mapped["Pipeline"] = relationship(
        "Pipeline",
        back_populates="runs",
    )
