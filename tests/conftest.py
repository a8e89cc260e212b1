"""Shared fixtures: in-memory store and remote, zero-backoff sync settings."""

from datetime import date

import pytest

from finsync.config import SyncSettings
from finsync.orchestrator import OfflineSession
from finsync.queries import ReactiveQueries
from finsync.services.remote import InMemoryRemoteService
from finsync.store import InMemoryBackend, LocalStore
from finsync.sync import SyncEngine


OWNER = "user-1"
TODAY = date(2025, 1, 15)


@pytest.fixture
def fast_settings():
    return SyncSettings(
        remote_timeout_seconds=2,
        replay_attempts=3,
        backoff_multiplier=0,
        backoff_min_seconds=0,
        backoff_max_seconds=0,
        auto_sync_on_reconnect=True,
    )


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def store(backend):
    return LocalStore(backend)


@pytest.fixture
def remote():
    return InMemoryRemoteService()


@pytest.fixture
def engine(store, remote, fast_settings):
    return SyncEngine(store, remote, settings=fast_settings)


@pytest.fixture
def queries(store):
    return ReactiveQueries(store, today=lambda: TODAY)


@pytest.fixture
def session(store, engine, queries):
    session = OfflineSession(store, engine, queries=queries, auto_sync=False)
    session.sign_in(OWNER)
    return session
