"""Services package."""

from finsync.services.remote import (
    GoogleSheetsClient,
    GoogleSheetsRemoteService,
    InMemoryRemoteService,
    RemoteDataService,
    RemoteServiceError,
)

__all__ = [
    "GoogleSheetsClient",
    "GoogleSheetsRemoteService",
    "InMemoryRemoteService",
    "RemoteDataService",
    "RemoteServiceError",
]
