"""Configuration package."""

from smart_ledger.config.settings import (
    AppSettings,
    RestBackendSettings,
    Settings,
    SupabaseSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "RestBackendSettings",
    "Settings",
    "SupabaseSettings",
    "get_settings",
    "validate_all_settings",
]
