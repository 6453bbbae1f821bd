"""
Engine configuration via pydantic-settings.

Settings are loaded from environment variables (or a .env file in dev) and
may also be built from a caller-supplied option map with
``Settings.from_options``. Recognised options accept both the snake_case
field name and the camelCase name used by embedding runtimes
(``ttlSeconds``, ``maxCacheEntries``, ...). Unrecognised options are ignored.
"""

from __future__ import annotations

from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ------------------------------------------------------------------ #
    # Response cache
    # ------------------------------------------------------------------ #
    ttl_seconds: float = Field(
        default=3600,
        gt=0,
        validation_alias=AliasChoices("ttl_seconds", "ttlSeconds"),
        description="Seconds a cached subtask result stays valid",
    )
    max_cache_entries: int = Field(
        default=10_000,
        ge=1,
        validation_alias=AliasChoices("max_cache_entries", "maxCacheEntries", "maxEntries"),
        description="Maximum number of entries before oldest-first eviction",
    )
    cache_lock_stripes: int = Field(
        default=16,
        ge=1,
        le=1024,
        validation_alias=AliasChoices("cache_lock_stripes", "cacheLockStripes"),
        description="Number of lock stripes guarding cache keys",
    )

    # ------------------------------------------------------------------ #
    # Memory cascade
    # ------------------------------------------------------------------ #
    working_max_size: int = Field(
        default=64,
        ge=1,
        validation_alias=AliasChoices("working_max_size", "workingMaxSize"),
    )
    short_term_max_size: int = Field(
        default=512,
        ge=1,
        validation_alias=AliasChoices("short_term_max_size", "shortTermMaxSize"),
    )
    working_weight: float = Field(
        default=1.0,
        ge=0,
        validation_alias=AliasChoices("working_weight", "workingWeight"),
        description="Recency weight applied to Working tier matches",
    )
    short_term_weight: float = Field(
        default=0.75,
        ge=0,
        validation_alias=AliasChoices("short_term_weight", "shortTermWeight"),
    )
    long_term_weight: float = Field(
        default=0.5,
        ge=0,
        validation_alias=AliasChoices("long_term_weight", "longTermWeight"),
    )

    # ------------------------------------------------------------------ #
    # Worker pool
    # ------------------------------------------------------------------ #
    max_concurrency: int = Field(
        default=5,
        ge=1,
        le=1024,
        validation_alias=AliasChoices("max_concurrency", "maxConcurrency"),
        description="Maximum subtasks executing at once",
    )
    subtask_timeout: float = Field(
        default=30.0,
        gt=0,
        validation_alias=AliasChoices("subtask_timeout", "subtaskTimeout"),
        description="Per-subtask timeout in seconds",
    )

    # ------------------------------------------------------------------ #
    # Logging
    # ------------------------------------------------------------------ #
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("log_level", "logLevel"),
    )
    json_logs: bool = Field(
        default=False,
        validation_alias=AliasChoices("json_logs", "jsonLogs"),
    )

    @model_validator(mode="after")
    def _validate_tier_weights(self) -> Settings:
        """Working matches must never rank below colder tiers."""
        if not self.working_weight >= self.short_term_weight >= self.long_term_weight:
            raise ValueError(
                "tier weights must be non-increasing: "
                "working_weight >= short_term_weight >= long_term_weight"
            )
        return self

    @classmethod
    def from_options(cls, options: Mapping[str, Any] | None = None) -> Settings:
        """Build settings from a caller option map, ignoring unknown keys."""
        return cls(**dict(options or {}))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton.

    The orchestrator never reads this implicitly when settings are passed in;
    it exists for scripts and for callers that configure via the environment.
    """
    return Settings()
