"""
Application settings using Pydantic.

Provides environment-based configuration loading with ASSETPUB_ prefix.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DOCKER_CREDS_FILE = Path.home() / ".assetpub" / "docker-creds.json"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="ASSETPUB_",
        extra="ignore",
    )

    # AWS
    profile: str | None = None
    default_region: str = "us-east-1"

    # Build backend
    docker_command: str = "docker"
    docker_creds_file: Path = DEFAULT_DOCKER_CREDS_FILE

    # Publishing
    publish_concurrency: int = Field(default=20, ge=1)

    # Logging
    log_level: str = "WARNING"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
