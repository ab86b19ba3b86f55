"""
Configuration Management for the Finance Tracker

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets remote store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    transactions_sheet_name: str = Field(
        default="Transactions",
        description="Name of the sheet for transactions"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class LocalCacheSettings(BaseSettings):
    """Local fallback cache configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOCAL_CACHE_",
        extra="ignore"
    )

    directory: str = Field(
        default=".finance-cache",
        description="Directory holding one JSON file per owner"
    )

    @property
    def path(self) -> Path:
        return Path(self.directory).expanduser()


class LedgerSettings(BaseSettings):
    """Ledger behaviour and sanity limits."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    max_transaction_amount: float = Field(
        default=1000000.0,
        gt=0,
        description="Largest total cost accepted for a single transaction"
    )
    currency_symbol: str = Field(
        default="$",
        max_length=3,
        description="Symbol used in user-facing messages"
    )

    # Sample data
    sample_initial_deposit: float = Field(
        default=2000.0,
        gt=0,
        description="Opening deposit created by sample data generation"
    )
    sample_expense_count: int = Field(
        default=150,
        ge=0,
        le=1000,
        description="Number of random expenses created by sample data generation"
    )
    sample_days: int = Field(
        default=30,
        ge=1,
        le=365,
        description="How far back sample transactions are spread"
    )

    # Remote store
    remote_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per remote call before falling back to the local cache"
    )

    def format_amount(self, amount) -> str:
        """Format an amount for user-facing messages."""
        return f"{self.currency_symbol}{amount:,.2f}"


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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def local_cache(self) -> LocalCacheSettings:
        return LocalCacheSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()


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

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("google_sheets", "local_cache", "ledger"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
