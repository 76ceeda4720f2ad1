"""
Shared configuration management for RouteWise services.
"""

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTEWISE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True
    )

    # Environment
    env: str = Field(default="development")
    log_level: str = Field(default="info")
    development_mode: Optional[bool] = Field(default=None)

    # Remote cache backend (URL wins over host/port)
    redis_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ROUTEWISE_REDIS_URL", "REDIS_URL"),
    )
    redis_host: Optional[str] = Field(default=None)
    redis_port: int = Field(default=6379)
    redis_password: Optional[str] = Field(default=None)
    redis_db: int = Field(default=0)

    redis_connect_timeout_seconds: float = Field(default=5.0)
    redis_op_timeout_seconds: float = Field(default=1.0)
    redis_reconnect_interval_seconds: float = Field(default=30.0)
    redis_connect_max_attempts: int = Field(default=3)
    redis_backoff_base_seconds: float = Field(default=0.05)
    redis_backoff_max_seconds: float = Field(default=0.5)

    # Cache behaviour
    cache_key_prefix: str = Field(default="routewise")
    cache_default_ttl_ms: int = Field(default=5 * 60 * 1000)
    cache_single_flight: bool = Field(default=False)
    local_cache_max_entries: int = Field(default=1000)
    local_cache_sweep_interval_seconds: float = Field(default=5 * 60.0)

    # Per-domain TTLs (production values, scaled in development)
    geocode_ttl_ms: int = Field(default=24 * 60 * 60 * 1000)
    directions_ttl_ms: int = Field(default=30 * 60 * 1000)
    places_ttl_ms: int = Field(default=5 * 60 * 1000)
    static_asset_ttl_ms: int = Field(default=7 * 24 * 60 * 60 * 1000)
    dev_ttl_multiplier: int = Field(default=10)

    # Response cache for /api handlers
    response_cache_enabled: Optional[bool] = Field(default=None)

    @property
    def is_development(self) -> bool:
        """Whether development behaviour (long TTLs, dev endpoints) applies."""
        if self.development_mode is not None:
            return self.development_mode
        return self.env.lower() != "production"

    @property
    def ttl_multiplier(self) -> int:
        """Multiplier applied uniformly to every domain TTL."""
        return max(1, self.dev_ttl_multiplier) if self.is_development else 1

    @property
    def has_redis_target(self) -> bool:
        """Whether a remote cache backend is configured at all."""
        return bool(self.redis_url or self.redis_host)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
