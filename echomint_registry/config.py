"""
Configuration for the EchoMint registry service.

Settings come from ``ECHOMINT_``-prefixed environment variables or a ``.env``
file. ``get_settings()`` is cached, one instance per process.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import ZERO_IDENTITY, parse_identity


class Settings(BaseSettings):
    """Service settings from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ECHOMINT_", env_file=".env", case_sensitive=False
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False

    # Registry
    # Deployer identity. The zero identity means nobody may curate.
    curator: str = ZERO_IDENTITY
    compact_owner_index: bool = False
    # Events kept in the in-memory journal, 0 keeps all
    journal_retention: int = Field(0, ge=0)

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    @field_validator("curator")
    @classmethod
    def normalize_curator(cls, v: str) -> str:
        return parse_identity(v)

    @field_validator("log_format")
    @classmethod
    def check_log_format(cls, v: str) -> str:
        if v not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
