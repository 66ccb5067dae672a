"""
Centralized settings for conduit.

Manifesto:
    One validated, cached settings object drives how the canonical
    middleware stack is assembled (retry backoff, replica routing, slow
    execution thresholds, cache backend) instead of every caller wiring
    middlewares by hand with ad-hoc constants.

    - **Pydantic validation:** Type-checked at startup, not at call time
    - **Environment-driven:** Reads ``CONDUIT_*`` env vars and .env files
    - **Sensible defaults:** Works out of the box with a single connection

Examples:
    >>> from conduit.core.settings import ConduitSettings
    >>> settings = ConduitSettings(replica_primary="primary", replicas="r1,r2")
    >>> settings.replicas
    ['r1', 'r2']

Tags:
    conduit, configuration, settings, pydantic, caching, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .logging import resolve_level


class ConduitSettings(BaseSettings):
    """Conduit pipeline configuration.

    All fields can be set via ``CONDUIT_*`` environment variables (e.g.
    ``CONDUIT_RETRY_MAX_ATTEMPTS=5``) or through a ``.env`` file.
    ``CONDUIT_REPLICAS`` accepts a comma separated list.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONDUIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Connections ──────────────────────────────────────────────
    default_connection: str | None = Field(
        default=None,
        description="Default connection name (first registered adapter when unset)",
    )

    # ── Retry ────────────────────────────────────────────────────
    retry_base_delay: float = Field(default=0.01, ge=0, description="Seconds")
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_multiplier: int = Field(default=1, ge=1)

    # ── Replicas ─────────────────────────────────────────────────
    replica_primary: str | None = Field(default=None)
    replicas: Annotated[list[str], NoDecode] = Field(default_factory=list)
    replica_fallback: Literal["none", "any", "primary", "replicas"] = Field(default="primary")
    replicas_disabled: bool = Field(default=False)

    # ── Slow execution monitor ───────────────────────────────────
    slow_threshold_ms: int = Field(default=100, ge=1)
    slow_log_level: str = Field(default="error")
    slow_always: bool = Field(default=False)

    # ── Cache ────────────────────────────────────────────────────
    cache_url: str | None = Field(
        default=None,
        description='"null", "memory" or a redis:// URL; unset disables caching',
    )
    cache_default_ttl_seconds: int | None = Field(default=None, ge=1)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_json: bool | None = Field(default=None)

    @field_validator("replicas", mode="before")
    @classmethod
    def _split_replicas(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [name.strip() for name in value.split(",") if name.strip()]
        return value

    @field_validator("replica_fallback", mode="before")
    @classmethod
    def _normalize_fallback(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("slow_log_level", "log_level")
    @classmethod
    def _validate_level(cls, value: str) -> str:
        resolve_level(value)
        return value

    @model_validator(mode="after")
    def _validate_replicas(self) -> ConduitSettings:
        if self.replica_primary is not None and self.replica_primary in self.replicas:
            raise ValueError(
                f'Primary connection "{self.replica_primary}" can not be listed as a replica.'
            )
        if self.replicas and self.replica_primary is None:
            raise ValueError("Replicas are configured without a primary connection.")
        return self

    # ── Derived properties ───────────────────────────────────────

    @property
    def replicas_enabled(self) -> bool:
        return self.replica_primary is not None and bool(self.replicas)


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, ConduitSettings] = {}


def get_settings(*, _force_reload: bool = False) -> ConduitSettings:
    """Load, validate, and cache a :class:`ConduitSettings` instance.

    Parameters
    ----------
    _force_reload:
        Bypass cache and reload from the environment.
    """
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]

    settings = ConduitSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = [
    "ConduitSettings",
    "get_settings",
    "clear_settings_cache",
]
