"""Drains the sync queue against the remote data service.

Delivery is at-least-once with a bounded retry budget: an item that fails
MAX_SYNC_RETRIES times is dropped. That is the one place local data can be
lost, so every drop is logged at ERROR level with its full payload.
"""

import json
import logging
import threading
from typing import Any, Callable, Dict, Optional, Tuple

from fitplan.errors import UnsupportedSyncActionError
from fitplan.remote.base import RemoteDataService
from fitplan.types import (
    ACTION_CREATE,
    ACTION_UPDATE,
    COLLECTION_SESSIONS,
    COLLECTION_USERS,
    COLLECTION_WEIGHTS,
    MAX_SYNC_RETRIES,
    QUEUE_SCHEMA_VERSION,
    DrainResult,
    SyncQueueItem,
)

from .connectivity import ConnectivityMonitor
from .queue import SyncQueue

logger = logging.getLogger(__name__)


def _apply_profile(remote: RemoteDataService, payload: Dict[str, Any]) -> None:
    remote.save_profile(payload["user_id"], payload["profile"])


def _apply_session(remote: RemoteDataService, payload: Dict[str, Any]) -> None:
    remote.add_session(payload)


def _apply_weight(remote: RemoteDataService, payload: Dict[str, Any]) -> None:
    remote.add_weight_entry(
        payload["user_id"],
        payload["weight"],
        payload.get("notes"),
        entry_id=payload.get("id"),
    )


# (collection, action) -> remote write
SYNC_HANDLERS: Dict[Tuple[str, str], Callable[[RemoteDataService, Dict[str, Any]], None]] = {
    (COLLECTION_USERS, ACTION_CREATE): _apply_profile,
    (COLLECTION_USERS, ACTION_UPDATE): _apply_profile,
    (COLLECTION_SESSIONS, ACTION_CREATE): _apply_session,
    (COLLECTION_WEIGHTS, ACTION_CREATE): _apply_weight,
}


class Reconciler:
    """Applies queued mutations to the remote, one FIFO pass per ``drain``.

    Args:
        queue: The queue to drain.
        monitor: Consulted before each pass; offline passes are no-ops.
        max_retries: Failures after which an item is dropped.
    """

    def __init__(
        self,
        queue: SyncQueue,
        monitor: ConnectivityMonitor,
        max_retries: int = MAX_SYNC_RETRIES,
    ):
        self._queue = queue
        self._monitor = monitor
        self.max_retries = max_retries
        self._draining = threading.Lock()
        self.last_result: Optional[DrainResult] = None

    @property
    def is_draining(self) -> bool:
        return self._draining.locked()

    def drain(self, remote: RemoteDataService) -> int:
        """Apply every queued item once.

        Returns:
            Number of items applied. 0 when offline, when the queue is empty,
            or when another pass is already running.
        """
        if not self._monitor.is_online:
            logger.info("Offline - sync postponed")
            return 0

        if not self._draining.acquire(blocking=False):
            logger.debug("Drain already in progress, skipping")
            return 0

        try:
            result = self._drain_locked(remote)
        finally:
            self._draining.release()

        self.last_result = result
        return result.applied

    def _drain_locked(self, remote: RemoteDataService) -> DrainResult:
        result = DrainResult(ran=True)
        snapshot = self._queue.peek_all()
        if not snapshot:
            return result

        logger.debug(f"Draining {len(snapshot)} queued changes")
        survivors = []

        for item in snapshot:
            if item.schema_version > QUEUE_SCHEMA_VERSION:
                logger.warning(
                    f"Sync item {item.id} has schema version {item.schema_version} "
                    f"(supported: {QUEUE_SCHEMA_VERSION}), leaving it queued"
                )
                result.skipped += 1
                survivors.append(item)
                continue

            try:
                self._apply(remote, item)
            except Exception as e:
                item.retry_count += 1
                if item.retry_count < self.max_retries:
                    logger.warning(
                        f"Sync error for {item.collection}:{item.action} {item.id}: {e} "
                        f"(retry {item.retry_count}/{self.max_retries})"
                    )
                    survivors.append(item)
                    result.retained.append(item)
                else:
                    logger.error(
                        f"Sync item abandoned after {item.retry_count} attempts: "
                        f"{item.collection}:{item.action} {item.id} payload="
                        f"{json.dumps(item.payload, default=str)}"
                    )
                    result.dropped.append(item)
                continue

            result.applied += 1

        self._queue.replace(survivors, drained_ids=[item.id for item in snapshot])

        if result.applied > 0:
            logger.info(f"{result.applied} items synced")
        return result

    def _apply(self, remote: RemoteDataService, item: SyncQueueItem) -> None:
        handler = SYNC_HANDLERS.get((item.collection, item.action))
        if handler is None:
            raise UnsupportedSyncActionError(item.collection, item.action)
        handler(remote, item.payload)
