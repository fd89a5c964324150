from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["DEFAULT_JWT_SECRET", "Settings", "get_settings"]

# Publicly known; only for local experiments.
DEFAULT_JWT_SECRET = "00000000-0000-0000-1000-000000000000"


class Settings(BaseSettings):
    """Process configuration read from the environment (and `.env`)."""

    database_uri: str = "jwtgo.sqlite"
    server_addr: str = "localhost"
    server_port: int = Field(default=8080, ge=1, le=65535)
    jwt_secret: str = DEFAULT_JWT_SECRET
    log_level: str = "INFO"

    store_timeout_sec: float = Field(default=5.0, gt=0)
    shutdown_grace_sec: float = Field(default=30.0, ge=0)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def uses_default_secret(self) -> bool:
        return self.jwt_secret == DEFAULT_JWT_SECRET


@lru_cache
def get_settings() -> Settings:
    return Settings()
