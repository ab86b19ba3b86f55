"""Configuration package."""

from finance_tracker.config.settings import (
    GoogleSheetsSettings,
    LedgerSettings,
    LocalCacheSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "GoogleSheetsSettings",
    "LedgerSettings",
    "LocalCacheSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
