"""Online/offline state tracking.

The monitor only reports transitions. Whoever cares about coming back
online (the orchestrator) subscribes and decides what to do.
"""

import logging
import threading
from abc import abstractmethod
from typing import Callable, List, Optional, Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)

ConnectivityCallback = Callable[[bool], None]


@runtime_checkable
class ConnectivitySignal(Protocol):
    """Source of the host's current connectivity state."""

    @abstractmethod
    def current(self) -> bool:
        """Return True if the remote side is currently reachable."""
        ...


class StaticSignal:
    """Settable signal, for tests and forced-offline runs."""

    def __init__(self, online: bool = True):
        self.online = online

    def current(self) -> bool:
        return self.online


class HttpHealthSignal:
    """Signal backed by the backend's ``/health`` endpoint."""

    CONNECTIVITY_TIMEOUT = 5.0

    def __init__(
        self,
        backend_url: Optional[str],
        timeout: float = CONNECTIVITY_TIMEOUT,
        client: Optional[httpx.Client] = None,
    ):
        self.backend_url = backend_url.rstrip("/") if backend_url else None
        self.timeout = timeout
        self._client = client

    def current(self) -> bool:
        if not self.backend_url:
            return False
        try:
            if self._client is not None:
                response = self._client.get(f"{self.backend_url}/health", timeout=self.timeout)
            else:
                response = httpx.get(f"{self.backend_url}/health", timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity check failed: {e}")
            return False
        return response.status_code == 200


class ConnectivityMonitor:
    """Tracks online state and notifies subscribers on transitions.

    Args:
        signal: Source consulted by ``refresh()``. Without one, state only
            changes through ``report()``.
        initial: State assumed before the first report.
    """

    def __init__(self, signal: Optional[ConnectivitySignal] = None, initial: bool = False):
        self._signal = signal
        self._online = initial
        self._subscribers: List[ConnectivityCallback] = []
        self._lock = threading.Lock()

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """Register ``callback(is_online)``. Returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def report(self, is_online: bool) -> bool:
        """Feed a connectivity observation.

        Returns:
            True if the observation was a transition (subscribers notified).
        """
        is_online = bool(is_online)
        with self._lock:
            if is_online == self._online:
                return False
            self._online = is_online
            subscribers = list(self._subscribers)

        if is_online:
            logger.info("Connection restored")
        else:
            logger.info("Connection lost - offline mode activated")

        for callback in subscribers:
            try:
                callback(is_online)
            except Exception as e:
                logger.error(f"Connectivity subscriber failed: {e}", exc_info=True)
        return True

    def refresh(self) -> bool:
        """Sample the signal once and report it. Returns the current state."""
        if self._signal is None:
            return self._online
        try:
            observed = self._signal.current()
        except Exception as e:
            logger.debug(f"Connectivity signal error: {e}", exc_info=True)
            observed = False
        self.report(observed)
        return self._online
