"""
Remote Data Service Package

The server-side counterpart the sync engine replays against.
Ships an in-process implementation and a Google Sheets one.
"""

from finsync.services.remote.interface import RemoteDataService, RemoteServiceError
from finsync.services.remote.memory import InMemoryRemoteService
from finsync.services.remote.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsRemoteService,
)

__all__ = [
    # Interface
    "RemoteDataService",
    # Exceptions
    "RemoteServiceError",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsRemoteService",
    "InMemoryRemoteService",
]
