"""Application configuration using Pydantic Settings."""
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # App
    app_name: str = "Smart City Attendance"
    debug: bool = False  # forces DEBUG logging
    log_level: str = "INFO"

    # MongoDB
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "smartcity"
    mongodb_timeout_ms: int = 5000

    # Partner attendance feed
    feed_url: str = "wss://partner.tty0x-api-app.cloud/api/v1/partner/dashboard/ws"
    feed_enabled: bool = True
    feed_interval: int = Field(25, ge=25, le=120)  # seconds between upstream pushes
    shift_cycle_seconds: float = 30.0
    realtime_buffer_size: int = 100

    # Reconnect: "fixed" waits reconnect_delay_seconds every time,
    # "exponential" doubles from reconnect_base_delay_seconds and gives up after max attempts.
    reconnect_policy: Literal["fixed", "exponential"] = "fixed"
    reconnect_delay_seconds: float = 3.0
    reconnect_base_delay_seconds: float = 1.0
    reconnect_max_attempts: int = 10

    # CORS (comma-separated origins)
    cors_origins: str = "http://localhost:5173"

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level.upper()

    @model_validator(mode="after")
    def _validate_feed_url(self):
        if self.feed_enabled and not self.feed_url.strip():
            raise ValueError("FEED_URL must be set when FEED_ENABLED is true.")
        return self


settings = Settings()
