from __future__ import annotations

from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

from .schema import DEFAULT_SCHEMA


class ClientSettings(BaseSettings):
    """Connection settings, read from ``SQLA_FLUENT_*`` environment variables.

    ``SQLA_FLUENT_DATABASE_URL`` is the only required value when a client is
    created without an explicit URL.
    """

    model_config = SettingsConfigDict(
        env_prefix="SQLA_FLUENT_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    database_url: str | None = None
    db_schema: str = DEFAULT_SCHEMA
    pool_size: int = 5
    max_overflow: int = 10
    pool_pre_ping: bool = True
    echo: bool = False

    def engine_options(self) -> dict[str, Any]:
        """Keyword arguments for ``create_async_engine``."""
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_pre_ping": self.pool_pre_ping,
            "echo": self.echo,
        }
