"""Application configuration and settings management."""

from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="FIELDROUTE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Field Service Route Planner"
    osrm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "bike", "foot"] = Field(
        default="driving",
        description="OSRM profile used when no travel mode specific profile applies.",
    )
    osrm_max_retries: int = Field(default=2, ge=0)
    osrm_backoff_seconds: float = Field(default=0.5, ge=0.0)
    osrm_timeout_seconds: float = Field(default=10.0, gt=0.0)
    oracle_max_concurrency: int = Field(
        default=5,
        ge=1,
        le=10,
        description="Maximum number of in-flight travel-time lookups during batch assignment.",
    )
    oracle_call_timeout_seconds: float = Field(default=5.0, gt=0.0)
    oracle_max_attempts: int = Field(default=2, ge=1)
    travel_cache_ttl_seconds: int = Field(default=3600, ge=0)
    solver_time_limit_seconds: int = Field(default=5, ge=0)

    day_start: str = Field(default="09:30", pattern=r"^\d{2}:\d{2}$")
    day_end: str = Field(default="16:00", pattern=r"^\d{2}:\d{2}$")
    working_days: tuple[str, ...] = Field(default=("MON", "TUE", "WED", "THU", "FRI"))
    max_appointments_per_day: int = Field(default=5, ge=1)
    max_service_radius_km: float = Field(default=20.0, gt=0.0)
    default_appointment_minutes: int = Field(default=60, ge=1)
    buffer_minutes: int = Field(default=15, ge=0)
    base_latitude: float = Field(default=52.3676, ge=-90.0, le=90.0)
    base_longitude: float = Field(default=4.9041, ge=-180.0, le=180.0)

    fuel_cost_per_km: float = Field(default=0.20, ge=0.0, description="Euro per driven km.")
    technician_hourly_rate: float = Field(default=45.0, ge=0.0, description="Euro per working hour.")
    co2_kg_per_km: float = Field(default=0.12, ge=0.0)
    recommendation_cost_threshold_eur: float = Field(
        default=50.0,
        ge=0.0,
        description="Findings with estimated savings above this amount are ranked high.",
    )

    @field_validator("working_days", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return tuple(str(item).upper() for item in value)
        if isinstance(value, list):
            return tuple(str(item).upper() for item in value)
        if isinstance(value, str):
            # Try JSON first
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item).upper() for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip().upper() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip().upper(),)
        return tuple()


settings = Settings()
