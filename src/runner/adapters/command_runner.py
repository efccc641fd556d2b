from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from src.runner.services.db_role import principal_role
from src.runner.services.identity import current_principal


class SqlCommandRunner:
    """Выполняет канонизированную команду с позиционными параметрами ($1, $2).

    Команда идёт через соединение сессии, то есть в той же транзакции,
    что и последующее продвижение checkpoint, но под ролью вызывающего:
    служебные таблицы incremental.* ей недоступны.
    """

    async def run(self, session: AsyncSession, command: str, params: Sequence[Any]) -> None:
        principal = current_principal()
        conn = await session.connection()

        async with principal_role(conn, principal):
            await conn.exec_driver_sql(command, tuple(params))
