"""
Configuration Management for Smart Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see which backend the dashboard talks to and
ensures all required configuration is validated at startup.
"""

import warnings
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SupabaseSettings(BaseSettings):
    """Hosted Postgres backend (auth + realtime) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SUPABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="",
        description="Project URL, e.g. https://xyz.supabase.co"
    )
    anon_key: str = Field(
        default="",
        description="Public anon key used by the client"
    )
    schema_name: str = Field(
        default="public",
        description="Database schema holding the ledger tables"
    )
    oauth_provider: str = Field(
        default="google",
        description="OAuth provider offered on the sign-in screen"
    )
    redirect_url: Optional[str] = Field(
        default="http://localhost:8501",
        description="Where the OAuth provider sends the user back to (the app URL)"
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.anon_key)

    def warn_if_missing(self) -> None:
        """Warn (but don't fail) when the URL or key is missing."""
        if not self.is_configured:
            warnings.warn(
                "Supabase environment variables are missing. "
                "Please set SUPABASE_URL and SUPABASE_ANON_KEY."
            )


class RestBackendSettings(BaseSettings):
    """Custom REST backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_API_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the ledger REST API"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="HTTP timeout for a single request"
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    debug_mode: bool = Field(
        default=False,
        description="Show recent activity events in the sidebar"
    )

    # Which backend variant to use
    backend: Literal["supabase", "rest", "memory"] = Field(
        default="memory",
        description="Record store / identity variant"
    )

    # UI feedback
    notification_seconds: float = Field(
        default=2.0,
        gt=0,
        le=30,
        description="How long a toast stays visible"
    )
    refresh_seconds: float = Field(
        default=1.0,
        gt=0,
        le=60,
        description="How often the page re-renders to show pushed values and expired toasts"
    )

    # Anonymous identity persistence
    local_storage_path: str = Field(
        default=".smart_ledger/local_storage.json",
        description="File backing the local key-value storage"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON (False = console renderer)"
    )

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def supabase(self) -> SupabaseSettings:
        return SupabaseSettings()

    @property
    def rest(self) -> RestBackendSettings:
        return RestBackendSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with a
    "<name>_error" entry describing each failure.
    """
    results = {}

    settings = get_settings()

    try:
        supabase = settings.supabase
        results["supabase"] = supabase.is_configured
        if not supabase.is_configured:
            results["supabase_error"] = "SUPABASE_URL / SUPABASE_ANON_KEY not set"
    except Exception as e:
        results["supabase"] = False
        results["supabase_error"] = str(e)

    try:
        _ = settings.rest
        results["rest"] = True
    except Exception as e:
        results["rest"] = False
        results["rest_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    return results
