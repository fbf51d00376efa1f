"""
Foyer — Application Configuration
===================================

What:  Typed settings for the service, the built-in stages and the shared
       query cache.
How:   A pydantic-settings ``Settings`` model read from ``FOYER_*``
       environment variables or a ``.env`` file, exposed as the ``settings``
       singleton.
Who:   Imported by the app factory, the built-in stages and the shared
       query cache in services/cache.py.
When:  Loaded once at import time. The middleware pipeline is built from
       these values at startup and never changes afterwards.

Example .env:
    FOYER_LOG_LEVEL=DEBUG
    FOYER_RATE_LIMIT_REQUESTS=20
    FOYER_QUERY_EVICTION_DELAY=0
"""

import logging
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Service settings. Every field has a development default."""

    model_config = SettingsConfigDict(
        env_prefix="FOYER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Service ───────────────────────────────────────────────────────────
    app_name: str = "Foyer"
    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)
    log_level: str = "INFO"

    # Comma-separated list of allowed browser origins
    cors_origins: str = "http://localhost:3000"

    # ── Built-in stages ───────────────────────────────────────────────────
    request_id_header: str = "X-Request-ID"
    rate_limit_requests: int = Field(default=100, ge=1)
    rate_limit_window: int = Field(default=3600, ge=1)  # seconds

    # ── Query cache ───────────────────────────────────────────────────────
    # Idle entries live this many seconds; 0 evicts at once
    query_eviction_delay: float = Field(default=180.0, ge=0.0)
    # Unset: entries only go stale through invalidation
    query_stale_after: Optional[float] = Field(default=None, gt=0.0)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}; got {value!r}")
        return level

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
