"""
Configuration Management for finsync

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see which backends exist and ensures all
required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """Sync engine behaviour: timeouts and the bounded retry policy."""

    model_config = SettingsConfigDict(
        env_prefix="FINSYNC_SYNC_",
        extra="ignore"
    )

    remote_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound for a single remote call"
    )
    replay_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per operation within one sync pass"
    )
    backoff_multiplier: float = Field(
        default=0.5,
        ge=0.0,
        description="Exponential backoff multiplier (seconds)"
    )
    backoff_min_seconds: float = Field(
        default=0.0,
        ge=0.0,
        description="Minimum wait between attempts"
    )
    backoff_max_seconds: float = Field(
        default=8.0,
        ge=0.0,
        description="Maximum wait between attempts"
    )
    auto_sync_on_reconnect: bool = Field(
        default=True,
        description="Start a sync pass when connectivity comes back"
    )


class LocalStoreSettings(BaseSettings):
    """Local mirror persistence."""

    model_config = SettingsConfigDict(
        env_prefix="FINSYNC_STORE_",
        extra="ignore"
    )

    backend: str = Field(
        default="sqlite",
        pattern="^(sqlite|memory)$",
        description="Local store backend"
    )
    database_path: str = Field(
        default="finsync.db",
        description="SQLite file holding the local mirror and the queue"
    )


class RemoteSettings(BaseSettings):
    """Which remote data service the sync engine talks to."""

    model_config = SettingsConfigDict(
        env_prefix="FINSYNC_REMOTE_",
        extra="ignore"
    )

    backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Remote data service implementation"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets remote storage configuration."""

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
    expenses_sheet_name: str = Field(default="Expenses")
    budgets_sheet_name: str = Field(default="Budgets")
    buckets_sheet_name: str = Field(default="SavingsBuckets")
    entries_sheet_name: str = Field(default="SavingsEntries")

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

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for structured logs"
    )


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

    # Sub-settings are loaded lazily so a missing Google Sheets
    # configuration does not break the in-memory setup.

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def store(self) -> LocalStoreSettings:
        return LocalStoreSettings()

    @property
    def remote(self) -> RemoteSettings:
        return RemoteSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

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

    Returns a dict of {setting_name: is_valid}, plus a
    `<name>_error` entry for each section that failed to load.
    """
    results = {}
    settings = get_settings()

    sections = {
        "sync": lambda: settings.sync,
        "store": lambda: settings.store,
        "remote": lambda: settings.remote,
        "google_sheets": lambda: settings.google_sheets,
        "app": lambda: settings.app,
    }
    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
