"""Configuration management for the hospital scheduling engine."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Booking store / availability database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/hospital.db",
        description="SQLAlchemy async DSN for providers, availability and bookings",
    )

    # Result cache
    cache_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Where optimization results are cached",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL used when cache_backend is 'redis'",
    )
    cache_ttl_seconds: int = Field(
        default=1800,
        ge=1,
        description="Time-to-live for cached optimization results",
    )
    cache_key_prefix: str = Field(default="appointment_optimization")
    single_flight_enabled: bool = Field(
        default=True,
        description="Collapse concurrent identical optimizations into one computation",
    )

    # Clinic calendar
    clinic_timezone: str = Field(
        default="UTC",
        description="IANA timezone that provider working hours are expressed in",
    )

    # Search space and ranking
    scheduling_horizon_days: int = Field(default=7, ge=1)
    score_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_recommended_slots: int = Field(default=10, ge=1, le=10)
    max_alternatives: int = Field(default=5, ge=0, le=5)
    alternative_search_days: int = Field(
        default=14,
        ge=1,
        description="How far past the one-week mark alternatives are searched for",
    )

    # Estimation defaults
    default_wait_minutes: float = Field(default=15.0, ge=0.0)
    max_wait_minutes: float = Field(default=120.0, ge=0.0, le=120.0)
    default_duration_minutes: int = Field(default=30, ge=1)
    default_demand_per_hour: float = Field(
        default=5.0,
        ge=0.0,
        description="Flat demand curve used when the forecaster is unavailable",
    )
    demand_cap: float = Field(default=20.0, gt=0.0)
    limited_resource_ratio: float = Field(
        default=1.5,
        description="Peak/mean demand ratio above which resources are 'limited'",
    )

    # External collaborators
    collaborator_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Upper bound for a single availability/booking/forecast lookup",
    )

    # Observability
    observability_enabled: bool = Field(default=True)
    observability_log_dir: Path = Field(default=Path("./data/logs"))

    # Debug
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode (verbose SQL echo)",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    @property
    def uses_redis(self) -> bool:
        """Check if results are cached in Redis."""
        return self.cache_backend == "redis"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
