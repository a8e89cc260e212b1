"""Configuration package."""

from finsync.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    LocalStoreSettings,
    RemoteSettings,
    Settings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "LocalStoreSettings",
    "RemoteSettings",
    "Settings",
    "SyncSettings",
    "get_settings",
    "validate_all_settings",
]
