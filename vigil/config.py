"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Vigil configuration. All values come from environment variables."""

    # Database
    database_path: Path = Field(default=Path("data/vigil.db"))

    # Turso (hosted libSQL); overrides database_path when set
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Cron trigger (shared secret sent as "Authorization: Bearer <secret>")
    cron_secret: str = Field(default="")

    # Scheduler
    timer_enabled: bool = Field(default=True)
    tick_interval_seconds: int = Field(default=60, ge=1)
    max_parallel_executions: int = Field(default=5, ge=1)
    execution_timeout_seconds: float = Field(default=30.0, gt=0)

    # History
    history_retention: int = Field(default=100, ge=1)

    # HTTP
    http_host: str = Field(default="0.0.0.0")
    http_port: int = Field(default=8080)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)


settings = Settings()
