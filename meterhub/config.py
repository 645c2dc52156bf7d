"""
Configuration settings for meterhub.

Uses Pydantic Settings to load environment variables for the reading store,
logging, the telemetry hub and the reconnecting client.
"""
from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("meterhub", alias="DB_NAME")
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(10, alias="DB_POOL_MAX_SIZE")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")
    store_backend: str = Field("postgres", alias="STORE_BACKEND")

    # Hub
    hub_host: str = Field("0.0.0.0", alias="HUB_HOST")
    hub_port: int = Field(3000, alias="HUB_PORT")
    liveness_interval_seconds: float = Field(25.0, alias="LIVENESS_INTERVAL_SECONDS")
    local_timezone: str = Field("UTC", alias="LOCAL_TIMEZONE")
    window_end_inclusive: bool = Field(True, alias="WINDOW_END_INCLUSIVE")
    initial_recent_windows: int = Field(10, alias="INITIAL_RECENT_WINDOWS")
    alert_cache_size: int = Field(1024, alias="ALERT_CACHE_SIZE")
    default_device_id: str = Field("EMS-SIMULATOR-001", alias="DEFAULT_DEVICE_ID")

    # Client
    client_primary_url: str = Field("ws://localhost:3000", alias="CLIENT_PRIMARY_URL")
    client_fallback_urls: List[str] = Field(default_factory=list, alias="CLIENT_FALLBACK_URLS")
    client_advance_delay_seconds: float = Field(1.0, alias="CLIENT_ADVANCE_DELAY_SECONDS")
    client_retry_delay_seconds: float = Field(3.0, alias="CLIENT_RETRY_DELAY_SECONDS")
    client_connect_timeout_seconds: float = Field(10.0, alias="CLIENT_CONNECT_TIMEOUT_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
