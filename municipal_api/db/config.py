from __future__ import annotations

import re
from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_SCHEME = re.compile(r"^postgres(?:ql)?(\+\w+)?://")


class Settings(BaseSettings):
    """
    Database settings for the municipal services API.

    Either a full POSTGRES_URL or the POSTGRES_USER / POSTGRES_PASSWORD /
    POSTGRES_DB triple (with optional host and port) must be provided. The
    async URL always uses the asyncpg driver; the sync URL is what Alembic
    prints in offline mode.
    """

    POSTGRES_URL: Optional[str] = Field(default=None, description="Full PostgreSQL connection URL")
    POSTGRES_USER: Optional[str] = Field(default=None)
    POSTGRES_PASSWORD: Optional[str] = Field(default=None)
    POSTGRES_DB: Optional[str] = Field(default=None)
    POSTGRES_HOST: str = Field(default="localhost")
    POSTGRES_PORT: int = Field(default=5432)

    # Engine / pool
    SQL_ECHO: bool = Field(default=False, description="Echo SQL statements")
    DB_POOL_SIZE: int = Field(default=5, ge=1)
    DB_MAX_OVERFLOW: int = Field(default=10, ge=0)
    DB_POOL_RECYCLE_SECONDS: int = Field(
        default=1800, description="Recycle pooled connections older than this; -1 disables"
    )

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @model_validator(mode="after")
    def _require_connection_info(self):
        if self.POSTGRES_URL:
            return self
        if not all([self.POSTGRES_USER, self.POSTGRES_PASSWORD, self.POSTGRES_DB]):
            raise ValueError(
                "Database configuration missing: set POSTGRES_URL or "
                "POSTGRES_USER, POSTGRES_PASSWORD and POSTGRES_DB."
            )
        return self

    @property
    def database_url(self) -> str:
        """Driver-neutral postgresql:// URL."""
        if self.POSTGRES_URL:
            return _SCHEME.sub("postgresql://", self.POSTGRES_URL)
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def async_database_url(self) -> str:
        return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    @property
    def sync_database_url(self) -> str:
        return self.database_url


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached database settings; `get_settings.cache_clear()` reloads them."""
    return Settings()
