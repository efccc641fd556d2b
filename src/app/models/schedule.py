from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Identity, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from .base import Base


class Schedule(Base):
    """Повторяющийся запуск пайплайна по cron (incremental.schedules)."""

    __tablename__ = "schedules"

    job_id: Mapped[int] = mapped_column(BigInteger, Identity(), primary_key=True)

    # "pipeline:<name>"
    job_name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)

    pipeline_name: Mapped[str] = mapped_column(
        Text,
        ForeignKey("incremental.pipelines.pipeline_name", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )

    schedule: Mapped[str] = mapped_column(Text, nullable=False)
    command: Mapped[str] = mapped_column(Text, nullable=False)

    # от чьего имени раннер вызывает execute_pipeline
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)

    next_run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
