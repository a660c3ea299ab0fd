"""Composition root.

Every service is built once here and handed to the ones that need it.
Tests build the same graph with fakes by passing ``remote`` and ``signal``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fitplan.config import FitplanConfig, load_config
from fitplan.core.orchestrator import DataOrchestrator
from fitplan.errors import StorageBackendError
from fitplan.notifications import LoggingNotifier, Notifier
from fitplan.remote.base import RemoteDataService
from fitplan.remote.http import HttpRemoteService
from fitplan.remote.memory import InMemoryRemoteService
from fitplan.storage.backends import SQLiteBackend
from fitplan.storage.backup import BackupManager
from fitplan.storage.cache import KeyValueCache
from fitplan.sync.connectivity import (
    ConnectivityMonitor,
    ConnectivitySignal,
    HttpHealthSignal,
    StaticSignal,
)
from fitplan.sync.queue import SyncQueue
from fitplan.sync.reconciler import Reconciler
from fitplan.weather import OpenMeteoWeatherClient, WeatherClient

logger = logging.getLogger(__name__)


@dataclass
class FitplanApp:
    """The wired-up object graph."""

    config: FitplanConfig
    cache: KeyValueCache
    queue: SyncQueue
    monitor: ConnectivityMonitor
    reconciler: Reconciler
    remote: RemoteDataService
    orchestrator: DataOrchestrator
    backups: BackupManager
    notifier: Notifier
    weather: Optional[WeatherClient] = None

    def close(self) -> None:
        self.orchestrator.close()
        for client in (self.remote, self.weather):
            close = getattr(client, "close", None)
            if callable(close):
                close()


def _open_backend(config: FitplanConfig) -> Optional[SQLiteBackend]:
    try:
        return SQLiteBackend(config.db_path)
    except StorageBackendError as e:
        logger.warning(f"LocalStorage not available - running in memory mode: {e}")
        return None


def build_app(
    config: Optional[FitplanConfig] = None,
    *,
    remote: Optional[RemoteDataService] = None,
    signal: Optional[ConnectivitySignal] = None,
    notifier: Optional[Notifier] = None,
    weather: Optional[WeatherClient] = None,
    offline: bool = False,
    persistent: bool = True,
) -> FitplanApp:
    """Build the application.

    Args:
        config: Resolved configuration; loaded from the environment if None.
        remote: Remote service. Defaults to HTTP when a backend is configured,
            otherwise an in-memory service.
        signal: Connectivity signal. Defaults to the backend health endpoint,
            or a static signal when ``offline`` is set or no backend exists.
        notifier: Defaults to LoggingNotifier.
        weather: Defaults to Open-Meteo when a backend is configured.
        offline: Force offline mode.
        persistent: Use the SQLite backend; False runs the cache in memory.
    """
    config = config or load_config()

    backend = _open_backend(config) if persistent else None
    cache = KeyValueCache(backend)
    queue = SyncQueue(cache)

    if remote is None:
        if config.has_backend:
            remote = HttpRemoteService.from_config(config)
        else:
            logger.info("No backend configured, using in-memory remote")
            remote = InMemoryRemoteService()

    if signal is None:
        if offline:
            signal = StaticSignal(False)
        elif config.has_backend:
            signal = HttpHealthSignal(config.backend_url)
        else:
            signal = StaticSignal(True)

    if weather is None and config.has_backend and not offline:
        weather = OpenMeteoWeatherClient(timeout=config.request_timeout)

    notifier = notifier or LoggingNotifier()
    monitor = ConnectivityMonitor(signal)
    reconciler = Reconciler(queue, monitor)
    orchestrator = DataOrchestrator(
        cache,
        queue,
        reconciler,
        monitor,
        remote,
        notifier=notifier,
        weather=weather,
        default_city=config.default_city,
    )
    # First sample; a reachable backend counts as a transition to online and drains the queue.
    monitor.refresh()

    return FitplanApp(
        config=config,
        cache=cache,
        queue=queue,
        monitor=monitor,
        reconciler=reconciler,
        remote=remote,
        orchestrator=orchestrator,
        backups=BackupManager(cache, queue),
        notifier=notifier,
        weather=weather,
    )
