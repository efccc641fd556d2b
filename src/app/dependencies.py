from __future__ import annotations

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from infra.db import get_db_session
from src.app.services.pipelines import PipelinesService
from src.config import Settings, get_settings
from src.runner.services.identity import Principal, build_principal

PRINCIPAL_HEADER = "X-Incremental-User"


def get_principal(
    x_incremental_user: str = Header(..., alias=PRINCIPAL_HEADER, min_length=1),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """Вызывающий берётся из заголовка; суперпользователи берутся из настроек."""
    return build_principal(x_incremental_user, superusers=settings.superusers)


def get_pipelines_service(
    session: AsyncSession = Depends(get_db_session),
    principal: Principal = Depends(get_principal),
) -> PipelinesService:
    """Фабрика PipelinesService для DI.

    Вынесена в отдельный модуль, чтобы в роутере не держать DI-логику.
    """
    return PipelinesService(session=session, principal=principal)
