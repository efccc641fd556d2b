from __future__ import annotations

import logging
from typing import Sequence
from uuid import uuid4

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.core.exceptions import InvalidCommandError
from src.runner.services.db_errors import is_db_disconnect
from src.runner.services.db_role import principal_role
from src.runner.services.identity import current_principal

logger = logging.getLogger("incremental_runner")


def canonicalize_command(command: str) -> str:
    canonical = (command or "").strip().rstrip(";").strip()
    if not canonical:
        raise InvalidCommandError("command cannot be empty")
    return canonical


class PostgresCommandValidator:
    """Проверка команды самим Postgres: PREPARE с ожидаемыми типами + DEALLOCATE.

    Ошибки парсинга, неизвестные объекты и несовпадение типов $1/$2
    превращаются в InvalidCommandError. PREPARE выполняется в savepoint,
    чтобы ошибка не ломала транзакцию создания пайплайна, и под ролью
    вызывающего: без прав на источник команда не пройдёт проверку.
    """

    async def validate(
        self,
        session: AsyncSession,
        command: str,
        param_types: Sequence[str],
    ) -> str:
        canonical = canonicalize_command(command)
        principal = current_principal()
        stmt_name = f"incremental_check_{uuid4().hex}"
        types_sql = ", ".join(param_types)

        try:
            async with session.begin_nested():
                conn = await session.connection()
                async with principal_role(conn, principal):
                    await conn.exec_driver_sql(f"PREPARE {stmt_name} ({types_sql}) AS {canonical}")
                    await conn.exec_driver_sql(f"DEALLOCATE {stmt_name}")
        except DBAPIError as exc:
            if is_db_disconnect(exc):
                raise
            logger.info("Rejected pipeline command: %s", exc.orig)
            raise InvalidCommandError(f"invalid command: {exc.orig}") from exc

        return canonical
