"""Persistent FIFO of mutations waiting for the remote data service.

The whole list lives under one cache key and is rewritten in a single
``set`` on every mutation, so a crash can never leave a torn queue.
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

from fitplan.storage.cache import KeyValueCache
from fitplan.types import (
    QUEUE_SCHEMA_VERSION,
    SYNC_ACTIONS,
    SYNC_COLLECTIONS,
    SYNC_QUEUE_KEY,
    SyncQueueItem,
)
from fitplan.utils import epoch_now, new_id

logger = logging.getLogger(__name__)

# Items persisted before the envelope existed carry no version.
LEGACY_SCHEMA_VERSION = 0


class SyncQueue:
    """Ordered list of pending create/update/delete operations.

    Args:
        cache: Cache the queue is persisted through.
        key: Cache key holding the serialized queue.
        now_fn: Clock returning epoch seconds.
    """

    def __init__(
        self,
        cache: KeyValueCache,
        key: str = SYNC_QUEUE_KEY,
        now_fn: Callable[[], float] = epoch_now,
    ):
        self._cache = cache
        self._key = key
        self._now = now_fn
        self._lock = threading.RLock()

    def enqueue(self, action: str, collection: str, payload: Dict[str, Any]) -> SyncQueueItem:
        """Append a mutation to the end of the queue and persist it.

        Raises:
            ValueError: Invalid action, collection or payload, including a
                payload that cannot be serialized.
        """
        if action not in SYNC_ACTIONS:
            raise ValueError(f"Invalid sync action: {action!r}")
        if collection not in SYNC_COLLECTIONS:
            raise ValueError(f"Invalid sync collection: {collection!r}")
        if not payload or not isinstance(payload, dict):
            raise ValueError("Sync payload must be a non-empty mapping")

        item = SyncQueueItem(
            id=new_id(),
            action=action,
            collection=collection,
            payload=dict(payload),
            enqueued_at=self._now(),
            retry_count=0,
            schema_version=QUEUE_SCHEMA_VERSION,
        )
        with self._lock:
            items = self.peek_all()
            items.append(item)
            if not self._persist(items):
                raise ValueError(f"Sync payload for {collection} could not be stored")
        logger.info(f"Action added to sync queue: {action} {collection}")
        return item

    def peek_all(self) -> List[SyncQueueItem]:
        """Snapshot of the queue in FIFO order, re-read from storage each call."""
        raw = self._cache.get(self._key)
        if raw is None:
            return []

        if isinstance(raw, list):
            raw_items, version = raw, LEGACY_SCHEMA_VERSION
        elif isinstance(raw, dict) and isinstance(raw.get("items"), list):
            raw_items = raw["items"]
            version = raw.get("schema_version", LEGACY_SCHEMA_VERSION)
        else:
            logger.warning("Sync queue storage is malformed, treating as empty")
            return []

        items = []
        for raw_item in raw_items:
            try:
                items.append(SyncQueueItem.from_dict(raw_item, default_schema_version=version))
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed sync queue entry: {e}")
        return items

    def replace(
        self, items: Iterable[SyncQueueItem], drained_ids: Optional[Iterable[str]] = None
    ) -> List[SyncQueueItem]:
        """Atomically overwrite the queue with ``items``.

        When ``drained_ids`` is given, entries currently stored whose id is
        not in it were enqueued after the caller took its snapshot; they are
        kept, after ``items``, in their original order.

        Returns:
            The list that was persisted.
        """
        new_items = list(items)
        with self._lock:
            if drained_ids is not None:
                drained = set(drained_ids)
                kept = {item.id for item in new_items}
                for item in self.peek_all():
                    if item.id not in drained and item.id not in kept:
                        new_items.append(item)
            self._persist(new_items)
        return new_items

    def pending_count(self) -> int:
        return len(self.peek_all())

    def items_for_owner(self, owner_id: str) -> List[SyncQueueItem]:
        """Queued items whose payload belongs to ``owner_id``."""
        return [item for item in self.peek_all() if item.payload.get("user_id") == owner_id]

    def clear(self) -> None:
        with self._lock:
            self._persist([])

    def _persist(self, items: List[SyncQueueItem]) -> bool:
        envelope = {
            "schema_version": QUEUE_SCHEMA_VERSION,
            "items": [item.to_dict() for item in items],
        }
        if not self._cache.set(self._key, envelope):
            logger.error(f"Failed to persist sync queue ({len(items)} items)")
            return False
        return True

    def __len__(self) -> int:
        return self.pending_count()
