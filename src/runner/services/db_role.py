from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncConnection

from src.runner.services.identity import Principal, is_elevated
from src.runner.services.sql_ident import quote_ident


@asynccontextmanager
async def principal_role(conn: AsyncConnection, principal: Principal) -> AsyncIterator[None]:
    """Выполнить блок под ролью Postgres вызывающего, а не под ролью сервиса.

    SET LOCAL ROLE живёт до конца транзакции (или savepoint): при ошибке
    откат сам возвращает роль сервиса, RESET ROLE нужен только на успешном выходе.
    """
    if is_elevated():
        raise RuntimeError("user SQL must not run inside the elevated registry scope")
    if not principal.db_role:
        raise RuntimeError(f"principal {principal.id!r} has no database role")

    await conn.exec_driver_sql(f"SET LOCAL ROLE {quote_ident(principal.db_role)}")
    yield
    await conn.exec_driver_sql("RESET ROLE")
