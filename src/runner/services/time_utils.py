from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """UTC-время с tzinfo; все временные колонки схемы имеют тип timestamptz."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Naive datetime из запроса считаем UTC, aware приводим к UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
