"""
Local Store Package

The client-side mirror, its mutation queue, change notifications and
persistence backends.
"""

from finsync.store.events import (
    METADATA_TOPIC,
    NOTIFICATION_TOPIC,
    QUEUE_TOPIC,
    ChangeEvent,
    EventBus,
)
from finsync.store.interface import (
    BackendError,
    LocalStoreBackend,
    NotFoundError,
    StoreError,
)
from finsync.store.local_store import LocalStore
from finsync.store.memory_backend import InMemoryBackend
from finsync.store.queue import MutationQueue
from finsync.store.sqlite_backend import SQLiteBackend

__all__ = [
    # Events
    "METADATA_TOPIC",
    "NOTIFICATION_TOPIC",
    "QUEUE_TOPIC",
    "ChangeEvent",
    "EventBus",
    # Interfaces
    "LocalStoreBackend",
    # Exceptions
    "BackendError",
    "NotFoundError",
    "StoreError",
    # Implementations
    "InMemoryBackend",
    "LocalStore",
    "MutationQueue",
    "SQLiteBackend",
]
