"""
CLCA Bridge - Core Config

STRICT CONFIGURATION LOADER
============================

This module provides the Settings class with strict environment loading.
Auto-loading of .env files is DISABLED inside Settings. If a dotenv file is
wanted, call load_environment() before the first get_settings() call.

    from clca_bridge.core.config import load_environment, get_settings

    load_environment()          # optional: populates os.environ from .env
    settings = get_settings()   # reads os.environ

CLCA integration is considered enabled only when both CLCA_INGEST_URL and
CLCA_JWT_SECRET are present (see Settings.is_configured).
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Pipeline settings with strict environment isolation.

    CRITICAL: Does NOT auto-load any .env file.
    All variables must be present in os.environ before instantiation.
    """

    model_config = SettingsConfigDict(
        env_file=None,  # DISABLED - no auto-load
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # =========================================================================
    # CLCA INGEST ENDPOINT
    # =========================================================================

    CLCA_INGEST_URL: str = Field(
        default="",
        description="Base URL of the CLCA ingest service (no trailing path)",
    )
    CLCA_JWT_SECRET: str = Field(
        default="",
        description="Pre-shared HS256 secret for ingest tokens",
    )
    CLCA_AUDIENCE: str = Field(default="clca", description="Token audience claim")
    CLCA_SYSTEM_ID: str = Field(
        default="ttg",
        description="Issuer claim and expected ContentDoc ownerSystem",
    )
    CLCA_USER_AGENT: str = Field(default="TTG-Sync/1.0")
    CLCA_TOKEN_TTL_SECONDS: int = Field(default=300, ge=1)
    CLCA_REQUEST_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    CLCA_HEALTH_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)

    # =========================================================================
    # TTG SOURCE SYSTEM
    # =========================================================================

    TTG_APP_BASE_URL: str = Field(
        default="https://ttg.example.com",
        description="Base URL used to build ownerUrl deep links",
    )
    TTG_TIMEZONE: str = Field(
        default="UTC",
        description="Timezone for naive event date/time strings",
    )

    # =========================================================================
    # DEAD LETTER QUEUE
    # =========================================================================

    DLQ_MAX_RETRIES: int = Field(default=5, ge=1)
    DLQ_BATCH_SIZE: int = Field(default=10, ge=1)
    DLQ_BASE_DELAY_SECONDS: float = Field(default=60.0, gt=0)
    DLQ_MAX_DELAY_SECONDS: float = Field(default=960.0, gt=0)
    DLQ_JITTER_RATIO: float = Field(default=0.1, ge=0, le=1)
    DLQ_POLL_INTERVAL_SECONDS: float = Field(default=60.0, gt=0)
    DLQ_RETRY_NON_RETRYABLE: bool = Field(
        default=False,
        description="Queue auth/4xx failures for retry instead of failing them terminally",
    )

    RESYNC_DELAY_SECONDS: float = Field(default=0.5, ge=0)

    # =========================================================================
    # INFRASTRUCTURE
    # =========================================================================

    DATABASE_URL: str = Field(
        default="",
        description="Postgres DSN for the DLQ tables (empty = in-memory store)",
    )
    ENVIRONMENT: Literal["dev", "staging", "prod"] = Field(default="dev")
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    LOG_JSON: bool = Field(default=True)

    @field_validator("CLCA_INGEST_URL", "TTG_APP_BASE_URL")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v

    # =========================================================================
    # PROPERTY ALIASES
    # =========================================================================

    @property
    def is_configured(self) -> bool:
        """True when both the ingest URL and the signing secret are set."""
        return bool(self.CLCA_INGEST_URL and self.CLCA_JWT_SECRET)

    @property
    def database_url(self) -> str:
        return self.DATABASE_URL.strip()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Singleton Settings instance
    """
    settings = Settings()  # type: ignore[call-arg]
    if not settings.is_configured:
        logger.warning(
            "CLCA_INGEST_URL or CLCA_JWT_SECRET not configured - CLCA integration disabled"
        )
    return settings


def reset_settings() -> None:
    """Clear the cached settings (for testing or environment switch)."""
    get_settings.cache_clear()


def load_environment(env_file: str | os.PathLike[str] | None = None) -> bool:
    """
    Load a dotenv file into os.environ without overriding existing values.

    Args:
        env_file: Explicit path; defaults to ./.env when present

    Returns:
        True if a file was loaded
    """
    path = Path(env_file) if env_file else Path.cwd() / ".env"
    if not path.is_file():
        logger.debug("No env file at %s", path)
        return False

    loaded = load_dotenv(path, override=False)
    reset_settings()
    logger.info("Loaded environment from %s", path)
    return loaded
