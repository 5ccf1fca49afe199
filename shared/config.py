"""
Shared configuration management for the caching service.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # External backend
    redis_url: str = "redis://localhost:6379/0"
    backend_enabled: bool = False
    backend_timeout_ms: int = Field(default=250, gt=0)
    backend_failure_threshold: int = Field(default=5, gt=0)
    backend_recovery_seconds: float = 30.0

    # Security
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_audience: Optional[str] = None

    # Strategies
    seed_default_strategies: bool = True
    default_strategy_id: str = "memory-cache"

    # Maintenance loop
    maintenance_interval_seconds: int = 300
    auto_apply_optimizations: bool = False

    # Optimization advisor
    advisor_min_sample_size: int = 100
    advisor_low_hit_rate: float = 0.5
    advisor_eviction_pressure_ratio: float = 0.1
    advisor_underuse_ratio: float = 0.25


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
