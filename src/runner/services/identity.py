from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass

SYSTEM_PRINCIPAL_ID = "incremental_system"


@dataclass(frozen=True, slots=True)
class Principal:
    """Идентичность, от имени которой вызывается операция.

    db_role: роль Postgres, под которой выполняются проверка и команда пайплайна.
    """

    id: str
    is_superuser: bool = False
    db_role: str | None = None


SYSTEM_PRINCIPAL = Principal(id=SYSTEM_PRINCIPAL_ID, is_superuser=True)

_current: ContextVar[Principal | None] = ContextVar("incremental_principal", default=None)
_elevated: ContextVar[bool] = ContextVar("incremental_elevated", default=False)


def build_principal(principal_id: str, *, superusers: Iterable[str] = ()) -> Principal:
    return Principal(
        id=principal_id,
        is_superuser=principal_id in set(superusers),
        db_role=principal_id,
    )


def current_principal() -> Principal:
    principal = _current.get()
    if principal is None:
        raise RuntimeError("No principal bound to the current context")
    return principal


def is_elevated() -> bool:
    return _elevated.get()


@contextmanager
def acting_as(principal: Principal) -> Iterator[Principal]:
    """Привязать вызывающего к текущему контексту (API-запрос, cron job)."""
    token = _current.set(principal)
    try:
        yield principal
    finally:
        _current.reset(token)


@contextmanager
def elevated() -> Iterator[Principal]:
    """Scoped borrow системной идентичности для доступа к служебным таблицам.

    Исходная идентичность восстанавливается на любом выходе, в том числе
    при исключении внутри блока. Команду пайплайна внутри блока не запускать.
    """
    principal_token = _current.set(SYSTEM_PRINCIPAL)
    elevated_token = _elevated.set(True)
    try:
        yield SYSTEM_PRINCIPAL
    finally:
        _elevated.reset(elevated_token)
        _current.reset(principal_token)
