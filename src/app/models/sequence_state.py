from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Text
from sqlalchemy.dialects.postgresql import OID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from .base import Base


class SequencePipelineState(Base):
    """Checkpoint sequence-пайплайна (incremental.sequence_pipelines)."""

    __tablename__ = "sequence_pipelines"

    pipeline_name: Mapped[str] = mapped_column(
        Text,
        ForeignKey("incremental.pipelines.pipeline_name", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )

    sequence_name: Mapped[str] = mapped_column(Text, nullable=False)
    sequence_oid: Mapped[Optional[int]] = mapped_column(OID, nullable=True)

    last_processed_sequence_number: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    pipeline: Mapped["Pipeline"] = relationship(
        "Pipeline",
        back_populates="sequence_state",
    )
