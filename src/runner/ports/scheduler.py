from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from src.app.models import Schedule


class Scheduler(Protocol):
    """Мост к планировщику: повторяющийся execute_pipeline по имени."""

    def validate(self, cron: str) -> None:
        ...

    async def schedule(
        self,
        session: AsyncSession,
        *,
        job_name: str,
        cron: str,
        command: str,
        pipeline_name: str,
        owner_id: str,
    ) -> int:
        ...

    async def unschedule(self, session: AsyncSession, job_name: str) -> bool:
        ...

    async def due(self, session: AsyncSession, now: datetime) -> Sequence[Schedule]:
        ...

    async def claim(self, session: AsyncSession, job: Schedule, now: datetime) -> bool:
        ...
