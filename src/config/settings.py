from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_env: str = "local"
    log_level: str = "INFO"

    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "incremental"
    db_user: str = "incremental"
    db_password: str = "incremental"

    # principals that bypass the pipeline ownership check
    superusers: list[str] = Field(default_factory=lambda: ["postgres"])

    default_file_list_function: str = "crunchy_lake.list_files"

    runner_poll_interval: float = 5.0

    # SequenceRange: дождаться незакоммиченных вставок в source-таблицу
    sequence_wait_for_writers: bool = True

    @property
    def database_url(self) -> str:
        # asyncpg + SQLAlchemy 2.x
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="INCREMENTAL_",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
