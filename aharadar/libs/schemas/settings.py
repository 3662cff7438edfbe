"""Application settings management leveraging pydantic v2."""

from __future__ import annotations

import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

if os.getenv("ENV", "development") in {"development", "dev", "local"}:
    # Containers should not rely on .env presence; a missing file is a no-op.
    load_dotenv(override=False)


class AppSettings(BaseSettings):
    """Typed process-level configuration sourced from environment variables."""

    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("ENVIRONMENT", "AHARADAR_ENVIRONMENT"),
    )
    redis_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("REDIS_URL", "AHARADAR_REDIS_URL"),
    )
    log_level: str | None = Field(
        default=None,
        validation_alias=AliasChoices("LOG_LEVEL", "AHARADAR_LOG_LEVEL"),
    )
    log_format: str = Field(
        default="json",
        validation_alias=AliasChoices("LOG_FORMAT", "AHARADAR_LOG_FORMAT"),
    )
    llm_provider: str | None = Field(
        default=None,
        validation_alias=AliasChoices("LLM_PROVIDER", "AHARADAR_LLM_PROVIDER"),
    )
    claude_calls_per_hour: int = Field(
        default=100,
        ge=0,
        validation_alias=AliasChoices("CLAUDE_CALLS_PER_HOUR", "AHARADAR_CLAUDE_CALLS_PER_HOUR"),
    )
    claude_searches_per_hour: int = Field(
        default=20,
        ge=0,
        validation_alias=AliasChoices("CLAUDE_SEARCHES_PER_HOUR", "AHARADAR_CLAUDE_SEARCHES_PER_HOUR"),
    )
    claude_thinking_tokens_per_hour: int = Field(
        default=50000,
        ge=0,
        validation_alias=AliasChoices(
            "CLAUDE_THINKING_TOKENS_PER_HOUR", "AHARADAR_CLAUDE_THINKING_TOKENS_PER_HOUR"
        ),
    )
    codex_calls_per_hour: int = Field(
        default=25,
        ge=0,
        validation_alias=AliasChoices("CODEX_CALLS_PER_HOUR", "AHARADAR_CODEX_CALLS_PER_HOUR"),
    )
    triage_batch_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("TRIAGE_BATCH_ENABLED", "AHARADAR_TRIAGE_BATCH_ENABLED"),
    )
    triage_batch_size: int = Field(
        default=15,
        ge=1,
        le=50,
        validation_alias=AliasChoices("TRIAGE_BATCH_SIZE", "AHARADAR_TRIAGE_BATCH_SIZE"),
    )
    # Seconds a remote quota read is trusted before the next read goes to redis.
    quota_cache_ttl_seconds: float = Field(
        default=1.0,
        ge=0,
        validation_alias=AliasChoices("QUOTA_CACHE_TTL_SECONDS", "AHARADAR_QUOTA_CACHE_TTL_SECONDS"),
    )
    http_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        validation_alias=AliasChoices("LLM_HTTP_TIMEOUT_SECONDS", "AHARADAR_HTTP_TIMEOUT_SECONDS"),
    )

    model_config = SettingsConfigDict(
        env_file=(".env", "aharadar/.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Load environment variables and return a cached settings instance."""

    return AppSettings()


__all__ = ["AppSettings", "get_settings"]
