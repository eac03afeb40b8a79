"""
Application settings using pydantic-settings.

Values come from ``CAMP_TRANSFERS_*`` environment variables or a ``.env``
file and are cached after the first load.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CAMP_TRANSFERS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: str = Field(default="Camp Transfers API")
    log_level: str = Field(default="INFO", description="INFO, DEBUG or TRACE")
    timezone: str = Field(
        default="Asia/Dubai",
        description="Camp local timezone used to decide today's date",
    )
    load_sample_data: bool = Field(
        default=False,
        description="Seed the in-memory database from sample_data.json on startup",
    )
    sample_data_path: Path | None = Field(default=None)
    slot_horizon_days: int = Field(default=42, ge=1, le=365)
    lower_berth_age: int = Field(default=45, ge=0)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except ZoneInfoNotFoundError as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"TRACE", "DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache
def get_settings() -> Settings:
    return Settings()
