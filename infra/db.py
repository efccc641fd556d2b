from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.config import Settings, get_settings


def build_engine(settings: Settings) -> AsyncEngine:
    """Асинхронный движок SQLAlchemy поверх asyncpg.

    application_name помечает соединения API и раннера в pg_stat_activity,
    чтобы видеть, кто держит блокировку checkpoint.
    """
    return create_async_engine(
        settings.database_url,
        echo=False,
        pool_pre_ping=True,
        pool_recycle=1800,
        connect_args={"server_settings": {"application_name": f"incremental-{settings.app_env}"}},
    )


settings = get_settings()

engine: AsyncEngine = build_engine(settings)

# Фабрика сессий; объекты остаются читаемыми после commit каждого юнита
async_session_factory = async_sessionmaker(
    engine,
    expire_on_commit=False,
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """DI-зависимость для FastAPI: выдаёт AsyncSession.

    Незакоммиченное при выходе откатывается вместе с закрытием сессии.
    """
    async with async_session_factory() as session:
        yield session
