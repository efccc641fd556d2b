from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from src.runner.services.db_errors import is_db_disconnect

logger = logging.getLogger("incremental_runner")

SEQUENCE_RELKIND = "S"
TABLE_RELKINDS = ("r", "p", "f")


@dataclass(frozen=True, slots=True)
class RelationInfo:
    # regclass::text уже в кавычках и с схемой, если она не в search_path
    name: str
    relkind: str


class CatalogRepo:
    """Запросы к системному каталогу Postgres (источники, функции, sequence)."""

    async def relation(self, session: AsyncSession, ref: str) -> RelationInfo | None:
        try:
            # to_regclass падает на синтаксически кривом имени; savepoint
            # не даёт этой ошибке сломать внешнюю транзакцию
            async with session.begin_nested():
                res = await session.execute(
                    text(
                        """
                        SELECT c.oid::regclass::text AS name, c.relkind::text AS relkind
                          FROM pg_catalog.pg_class c
                         WHERE c.oid = pg_catalog.to_regclass(:ref)
                        """
                    ),
                    {"ref": ref},
                )
                row = res.mappings().one_or_none()
        except DBAPIError as exc:
            if is_db_disconnect(exc):
                raise
            logger.info("Cannot resolve relation %r: %s", ref, exc.orig)
            return None

        if row is None:
            return None
        return RelationInfo(name=row["name"], relkind=row["relkind"])

    async def owning_table(self, session: AsyncSession, sequence: str) -> str | None:
        """Таблица, которой принадлежит sequence (serial / identity / OWNED BY)."""
        res = await session.execute(
            text(
                """
                SELECT d.refobjid::regclass::text
                  FROM pg_catalog.pg_depend d
                 WHERE d.classid = 'pg_catalog.pg_class'::regclass
                   AND d.refclassid = 'pg_catalog.pg_class'::regclass
                   AND d.objid = pg_catalog.to_regclass(:sequence)
                   AND d.deptype IN ('a', 'i')
                """
            ),
            {"sequence": sequence},
        )
        return res.scalars().first()

    async def owned_sequences(self, session: AsyncSession, table: str) -> list[str]:
        res = await session.execute(
            text(
                """
                SELECT s.oid::regclass::text
                  FROM pg_catalog.pg_depend d
                  JOIN pg_catalog.pg_class s
                    ON s.oid = d.objid AND s.relkind = 'S'
                 WHERE d.classid = 'pg_catalog.pg_class'::regclass
                   AND d.refclassid = 'pg_catalog.pg_class'::regclass
                   AND d.refobjid = pg_catalog.to_regclass(:table)
                   AND d.deptype IN ('a', 'i')
                 ORDER BY 1
                """
            ),
            {"table": table},
        )
        return list(res.scalars().all())

    async def resolve_list_function(self, session: AsyncSession, name: str) -> str | None:
        """Вернуть "schema"."function" для функции с одним text-аргументом или None."""
        try:
            async with session.begin_nested():
                res = await session.execute(
                    text(
                        """
                        SELECT pg_catalog.quote_ident(n.nspname)
                               || '.' || pg_catalog.quote_ident(p.proname)
                          FROM pg_catalog.pg_proc p
                          JOIN pg_catalog.pg_namespace n ON n.oid = p.pronamespace
                         WHERE p.oid = pg_catalog.to_regprocedure(:signature)
                        """
                    ),
                    {"signature": f"{name}(text)"},
                )
                return res.scalars().first()
        except DBAPIError as exc:
            if is_db_disconnect(exc):
                raise
            logger.info("Cannot resolve list function %r: %s", name, exc.orig)
            return None

    async def sequence_last_value(self, session: AsyncSession, sequence: str) -> int | None:
        """Последнее выданное значение; None, если nextval ещё не вызывали."""
        res = await session.execute(
            text("SELECT pg_catalog.pg_sequence_last_value(CAST(:sequence AS regclass))"),
            {"sequence": sequence},
        )
        value = res.scalar_one()
        return int(value) if value is not None else None

    async def wait_for_writers(self, session: AsyncSession, relation: str) -> None:
        """Дождаться транзакций, которые уже пишут в relation.

        Короткий SHARE-lock в отдельной транзакции: он ждёт всех, кто держит
        ROW EXCLUSIVE (т.е. мог взять значение sequence, но ещё не закоммитил),
        и сразу отпускается, не блокируя вставки на время команды.
        """
        engine = session.bind
        async with engine.connect() as conn:
            async with conn.begin():
                await conn.execute(text(f"LOCK TABLE {relation} IN SHARE MODE"))
