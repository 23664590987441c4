"""HTTP layer configuration."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from experiment_engine import __version__


class APISettings(BaseSettings):
    """Settings for the experiment HTTP service.

    Read from `EXPERIMENT_API_*` environment variables or `.env`.
    """

    model_config = SettingsConfigDict(
        env_prefix="EXPERIMENT_API_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_title: str = "Experimentation Engine API"
    api_version: str = __version__
    api_description: str = "Variant assignment, conversion tracking and experiment analysis"

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # Origins allowed to call assignment/conversion endpoints from the browser
    cors_origins: list[str] = ["*"]

    # Warm the active experiment cache from the store on startup
    preload_active_experiments: bool = True


@lru_cache
def get_api_settings() -> APISettings:
    """Get cached API settings."""
    return APISettings()
