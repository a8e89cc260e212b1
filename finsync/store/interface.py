"""
Abstract Local Store Backend

DESIGN DECISION: The local mirror talks to persistence through a small
interface. This allows us to:
1. Use SQLite for the durable client-side mirror
2. Use in-memory storage for testing
3. Keep the mirror, queue and sync logic decoupled from the backend

Rows are stored as JSON documents keyed by (table, id). The store keeps
a full in-memory copy, so the backend only needs write-through and a
bulk load at start-up. It is intentionally not a query engine.
"""

from abc import ABC, abstractmethod
from typing import Optional


class LocalStoreBackend(ABC):
    """
    Persistence for the local mirror, the mutation queue and the
    sync metadata singleton.
    """

    @abstractmethod
    def load_records(self, entity_type: str) -> list[str]:
        """
        Load every stored record of one entity type.

        Returns:
            JSON documents, in no particular order
        """
        pass

    @abstractmethod
    def save_record(self, entity_type: str, record_id: str, owner_id: str, data: str) -> None:
        """Insert or overwrite a record document."""
        pass

    @abstractmethod
    def delete_record(self, entity_type: str, record_id: str) -> None:
        """Delete a record document. Missing ids are ignored."""
        pass

    @abstractmethod
    def clear_records(self) -> None:
        """Delete every record of every entity type."""
        pass

    @abstractmethod
    def load_operations(self) -> list[str]:
        """
        Load queued operations.

        Returns:
            JSON documents ordered by their sequence number
        """
        pass

    @abstractmethod
    def save_operation(self, operation_id: str, sequence: int, data: str) -> None:
        """Insert or overwrite a queued operation."""
        pass

    @abstractmethod
    def delete_operation(self, operation_id: str) -> None:
        """Delete a queued operation. Missing ids are ignored."""
        pass

    @abstractmethod
    def clear_operations(self) -> None:
        """Delete every queued operation."""
        pass

    @abstractmethod
    def load_metadata(self) -> Optional[str]:
        """Load the sync metadata document, if one was saved."""
        pass

    @abstractmethod
    def save_metadata(self, data: str) -> None:
        """Overwrite the sync metadata document."""
        pass

    @abstractmethod
    def clear_metadata(self) -> None:
        """Delete the sync metadata document."""
        pass

    def close(self) -> None:
        """Release resources held by the backend."""
        return None


class StoreError(Exception):
    """Base exception for local store operations."""
    pass


class NotFoundError(StoreError):
    """Record not found in the local store."""
    pass


class BackendError(StoreError):
    """The persistence backend failed to read or write."""
    pass
