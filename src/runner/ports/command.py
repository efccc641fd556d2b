from __future__ import annotations

from typing import Any, Protocol, Sequence

from sqlalchemy.ext.asyncio import AsyncSession


class CommandValidator(Protocol):
    """Проверяет и канонизирует команду под ожидаемые типы параметров."""

    async def validate(
        self,
        session: AsyncSession,
        command: str,
        param_types: Sequence[str],
    ) -> str:
        ...


class CommandRunner(Protocol):
    """Выполняет команду пайплайна в транзакции сессии."""

    async def run(self, session: AsyncSession, command: str, params: Sequence[Any]) -> None:
        ...
