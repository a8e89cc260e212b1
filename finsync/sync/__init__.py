"""Sync engine package."""

from finsync.sync.engine import (
    RetryableSyncError,
    SyncEngine,
    SyncError,
    TerminalSyncError,
    classify,
    same_content,
)

__all__ = [
    "RetryableSyncError",
    "SyncEngine",
    "SyncError",
    "TerminalSyncError",
    "classify",
    "same_content",
]
