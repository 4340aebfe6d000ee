"""Application-wide configuration management using Pydantic settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigError(RuntimeError):
    """Raised when a required credential or endpoint is missing at startup."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing required configuration: {', '.join(missing)}")


class Settings(BaseSettings):
    """Central configuration for the analysis engine.

    Environment variables mirror the deployment setup and allow overrides per process.
    """

    model_config = SettingsConfigDict(env_file=".env", env_nested_delimiter="__", extra="allow")

    app_name: str = "GlowCheck"
    app_version: str = "1.0.0"
    environment: str = "development"
    log_level: str = "INFO"

    # Vision annotation service
    vision_api_url: str = "https://vision.googleapis.com"
    vision_api_key: Optional[str] = None

    # Generative text service
    generative_api_url: str = "https://toolkit.rork.com"
    generative_api_key: Optional[str] = None

    # Network client defaults
    request_timeout_ms: int = 30_000
    request_max_retries: int = 3
    request_retry_delay_ms: int = 1_000
    analysis_timeout_ms: int = 45_000  # generative calls are slow

    # Request deduplication
    dedup_window_ms: int = 30_000

    # Result cache
    cache_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl_ms: int = 24 * 60 * 60 * 1000
    cache_sweep_interval_s: float = 300.0

    # Scoring engine
    analysis_mode: Literal["annotation", "generative"] = "annotation"
    fingerprint_sample_size: int = 1000
    variance_seen: int = 3
    variance_first: int = 8

    def require(self, *fields: str) -> None:
        """Raise ConfigError if any of the named settings is empty."""

        missing = [name for name in fields if not getattr(self, name, None)]
        if missing:
            raise ConfigError(missing)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache configuration for the current process."""

    return Settings()  # type: ignore[arg-type]


settings = get_settings()
