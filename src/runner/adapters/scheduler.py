from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from croniter import croniter
from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.core.exceptions import InvalidArgumentError
from src.app.models import Schedule
from src.runner.services.identity import elevated
from src.runner.services.time_utils import utcnow

logger = logging.getLogger("incremental_runner")


def next_run_after(cron: str, base_time: datetime) -> datetime:
    try:
        return croniter(cron, base_time).get_next(datetime)
    except (ValueError, KeyError) as exc:
        raise InvalidArgumentError(f"invalid schedule {cron!r}: {exc}") from exc


class DatabaseScheduler:
    """Расписания в incremental.schedules; due-задачи забирает раннер.

    Cron-выражения считаются через croniter, как для scheduled tasks.
    """

    def validate(self, cron: str) -> None:
        next_run_after(cron, utcnow())

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
        next_run_at = next_run_after(cron, utcnow())

        with elevated():
            stmt = (
                insert(Schedule)
                .values(
                    job_name=job_name,
                    pipeline_name=pipeline_name,
                    schedule=cron,
                    command=command,
                    owner_id=owner_id,
                    next_run_at=next_run_at,
                )
                .on_conflict_do_update(
                    index_elements=[Schedule.job_name],
                    set_={
                        "pipeline_name": pipeline_name,
                        "schedule": cron,
                        "command": command,
                        "owner_id": owner_id,
                        "next_run_at": next_run_at,
                    },
                )
                .returning(Schedule.job_id)
            )
            res = await session.execute(stmt)
            return int(res.scalar_one())

    async def unschedule(self, session: AsyncSession, job_name: str) -> bool:
        with elevated():
            res = await session.execute(delete(Schedule).where(Schedule.job_name == job_name))
        return (res.rowcount or 0) > 0

    async def due(self, session: AsyncSession, now: datetime) -> Sequence[Schedule]:
        with elevated():
            res = await session.execute(
                select(Schedule)
                .where(Schedule.next_run_at <= now)
                .order_by(Schedule.next_run_at, Schedule.job_id)
            )
            return res.scalars().all()

    async def claim(self, session: AsyncSession, job: Schedule, now: datetime) -> bool:
        """Claim step: сдвинуть next_run_at, только если его никто не сдвинул раньше.

        True если задачу забрали мы, False если её уже забрал другой раннер.
        """
        with elevated():
            res = await session.execute(
                update(Schedule)
                .where(Schedule.job_id == job.job_id)
                .where(Schedule.next_run_at == job.next_run_at)
                .values(next_run_at=next_run_after(job.schedule, now), last_run_at=now)
            )
        await session.commit()
        return (res.rowcount or 0) == 1
