from __future__ import annotations

import asyncpg
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

# признаки потерянного соединения в тексте ошибки драйвера / ОС
_DISCONNECT_MARKERS = (
    "connection is closed",
    "connection was closed",
    "connection does not exist",
    "connection refused",
    "connect call failed",
    "no address associated with hostname",
    "the database system is starting up",
    "the database system is shutting down",
    "closed in the middle of operation",
    "terminating connection due to administrator command",
)


def _looks_disconnected(exc: BaseException) -> bool:
    msg = str(exc).lower()
    return any(marker in msg for marker in _DISCONNECT_MARKERS)


def is_db_disconnect(exc: BaseException) -> bool:
    """True, если ошибка означает потерю связи с БД, а не ошибку команды пайплайна.

    Такие ошибки не превращаются в ExecutionFailureError: раннер выходит из тика
    и повторяет позже, checkpoint остаётся на последнем коммите.
    """
    # SQLAlchemy wrappers
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError):
        if getattr(exc, "connection_invalidated", False):
            return True
        orig = getattr(exc, "orig", None)
        if orig is not None and orig is not exc:
            return is_db_disconnect(orig)

    # asyncpg / OS-level
    if isinstance(exc, (asyncpg.ConnectionDoesNotExistError, asyncpg.CannotConnectNowError)):
        return True
    if isinstance(exc, (asyncpg.PostgresError, OSError)):
        return _looks_disconnected(exc)

    return "no address associated with hostname" in str(exc).lower()
