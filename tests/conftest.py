"""
Pytest fixtures and test configuration for fitplan tests.
"""

import pytest

from fitplan.core import DataOrchestrator
from fitplan.notifications import LoggingNotifier
from fitplan.remote import InMemoryRemoteService
from fitplan.storage import KeyValueCache, MemoryBackend, SQLiteBackend
from fitplan.sync import ConnectivityMonitor, Reconciler, SyncQueue


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database path."""
    return tmp_path / "cache.db"


@pytest.fixture
def backend(temp_db):
    return SQLiteBackend(temp_db)


@pytest.fixture
def cache(backend, clock):
    """Cache persisted to a temporary SQLite file."""
    return KeyValueCache(backend, now_fn=clock)


@pytest.fixture
def memory_cache(clock):
    return KeyValueCache(MemoryBackend(), now_fn=clock)


@pytest.fixture
def queue(cache, clock):
    return SyncQueue(cache, now_fn=clock)


@pytest.fixture
def monitor():
    """Monitor that starts online; flip it with ``report()``."""
    return ConnectivityMonitor(initial=True)


@pytest.fixture
def reconciler(queue, monitor):
    return Reconciler(queue, monitor)


@pytest.fixture
def remote():
    return InMemoryRemoteService()


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def orchestrator(cache, queue, reconciler, monitor, remote, notifier):
    orchestrator = DataOrchestrator(cache, queue, reconciler, monitor, remote, notifier=notifier)
    yield orchestrator
    orchestrator.close()
