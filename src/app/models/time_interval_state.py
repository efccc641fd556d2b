from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Interval, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from .base import Base


class TimeIntervalPipelineState(Base):
    """Checkpoint time-interval-пайплайна (incremental.time_interval_pipelines)."""

    __tablename__ = "time_interval_pipelines"

    pipeline_name: Mapped[str] = mapped_column(
        Text,
        ForeignKey("incremental.pipelines.pipeline_name", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )

    time_interval: Mapped[timedelta] = mapped_column(Interval, nullable=False)
    batched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    min_delay: Mapped[timedelta] = mapped_column(Interval, nullable=False)

    # NULL -> ещё ничего не обработано, стартуем со start_time
    last_processed_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    pipeline: Mapped["Pipeline"] = relationship(
        "Pipeline",
        back_populates="time_interval_state",
    )
