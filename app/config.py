"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "test" | "staging" | "prod"
ENV = os.getenv("ESCROW_ENV", "dev").lower()

# Roles whose holders may arbitrate escalations.
ADMIN_ROLES = frozenset({"admin", "moderator"})

# Header carrying the identity resolved by the upstream auth gateway.
ACTOR_HEADER = "X-User-Id"


class Settings(BaseSettings):
    """Environment configuration for the order escrow service."""

    app_env: str = ENV
    database_url: str = "sqlite:///order_escrow.db"
    CORS_ALLOW_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False
    LOG_LEVEL: str = "INFO"
    ALLOW_DB_CREATE_ALL: bool = False

    # --- Escrow workflow -----------------------------------------------------
    CONFIRMATION_GRACE_DAYS: int = Field(default=7, ge=1)
    TRANSITION_MAX_ATTEMPTS: int = Field(default=3, ge=1)

    # --- Deadline sweep -------------------------------------------------------
    SCHEDULER_ENABLED: bool = False
    SWEEP_INTERVAL_MINUTES: int = Field(default=60, ge=1)
    SWEEP_MAX_WORKERS: int = Field(default=4, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8"
    )

    @field_validator("SENTRY_DSN")
    @classmethod
    def _strip_empty_dsn(cls, value: str | None) -> str | None:
        """Normalise an empty DSN to ``None`` so Sentry stays disabled."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class AppInfo(BaseModel):
    name: str = "order-escrow-service"
    version: str = "0.1.0"


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()


__all__ = [
    "ENV",
    "ADMIN_ROLES",
    "ACTOR_HEADER",
    "Settings",
    "AppInfo",
    "get_settings",
]
