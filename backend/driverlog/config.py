from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)
    """Application runtime configuration."""

    app_name: str = "DriverLog"
    environment: str = "development"
    host: str = os.getenv("DL_HOST", "127.0.0.1")
    port: int = int(os.getenv("DL_PORT", "8080"))
    log_level: str = os.getenv("DL_LOG_LEVEL", "INFO")

    sqlite_path: Path = Path(os.getenv("DL_SQLITE_PATH", "./data/driverlog.db"))
    export_dir: Path = Path(os.getenv("DL_EXPORT_DIR", "./data/exports"))

    remote_url: Optional[str] = os.getenv("DL_REMOTE_URL")
    remote_token: Optional[str] = os.getenv("DL_REMOTE_TOKEN")
    remote_timeout: int = int(os.getenv("DL_REMOTE_TIMEOUT", "15"))
    remote_batch_size: int = Field(default=int(os.getenv("DL_REMOTE_BATCH_SIZE", "450")), ge=1)

    admin_pin: str = os.getenv("DL_ADMIN_PIN", "admin123")

    timezone: str = os.getenv("TZ", "Europe/Warsaw")
    currency: str = os.getenv("DL_CURRENCY", "zł")

    # Defaults handed to a driver until their own payroll settings are saved
    default_vacation_rate_old: float = 210.0
    default_vacation_rate_new: float = 230.0
    default_sick_leave_rate: float = 150.0
    default_hourly_rate: float = 4.5
    default_extra_hourly_rate: float = 15.0
    default_workshop_rate: float = 10.0
    default_waiting_rate: float = 8.0
    default_total_vacation_days: int = 30
    default_vacation_days_limit: int = 26

    @field_validator("remote_url", mode="before")
    @classmethod
    def _blank_remote_url(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
settings.export_dir.mkdir(parents=True, exist_ok=True)
