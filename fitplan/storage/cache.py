"""Expiring key/value cache.

Availability beats durability here: if the persistent backend is missing or
starts failing, the cache flips into degraded (in-memory) mode, logs it,
and keeps answering. Callers never branch on the backend.
"""

import json
import logging
import threading
from typing import Any, Callable, List, Optional

from fitplan.errors import StorageBackendError
from fitplan.types import NAMESPACE_PREFIX, CacheEntry
from fitplan.utils import epoch_now

from .backends import KeyValueBackend, MemoryBackend

logger = logging.getLogger(__name__)

_PROBE_KEY = "__probe__"


class KeyValueCache:
    """Namespaced cache with optional per-entry TTL.

    Args:
        backend: Persistent backend. None starts directly in degraded mode.
        prefix: Namespace prepended to every key; ``clear()`` only touches
            keys under it.
        now_fn: Clock returning epoch seconds.
    """

    def __init__(
        self,
        backend: Optional[KeyValueBackend] = None,
        prefix: str = NAMESPACE_PREFIX,
        now_fn: Callable[[], float] = epoch_now,
    ):
        self.prefix = prefix
        self._now = now_fn
        self._persistent = backend
        self._memory = MemoryBackend()
        self._degraded = backend is None
        self._lock = threading.Lock()

        if backend is None:
            logger.warning("No persistent storage configured - running in memory mode")
        else:
            self._probe()

    # === Mode handling ===

    @property
    def degraded_mode(self) -> bool:
        """True once persistent storage was found unavailable."""
        return self._degraded

    @property
    def mode(self) -> str:
        if self._degraded or self._persistent is None:
            return self._memory.name
        return self._persistent.name

    def _probe(self) -> None:
        probe_key = self.prefix + _PROBE_KEY
        try:
            self._persistent.set(probe_key, "test")
            self._persistent.delete(probe_key)
            logger.debug(f"Persistent storage available ({self._persistent.name})")
        except StorageBackendError as e:
            self._enter_degraded(e)

    def _enter_degraded(self, error: Exception) -> None:
        with self._lock:
            if not self._degraded:
                logger.warning(f"Persistent storage unavailable - running in memory mode: {error}")
            self._degraded = True

    def _active(self) -> KeyValueBackend:
        return self._memory if self._degraded else self._persistent

    def _full_key(self, key: str) -> str:
        return self.prefix + key

    # === Basic operations ===

    def set(self, key: str, value: Any, ttl_hours: Optional[float] = None) -> bool:
        """Store ``value`` under ``key``, optionally expiring after ``ttl_hours``.

        Returns:
            True if the value was stored (persistently or in memory).
        """
        if not key or value is None:
            logger.warning("Invalid parameters for cache set")
            return False

        now = self._now()
        expires_at = now + ttl_hours * 3600 if ttl_hours is not None else None
        entry = CacheEntry(data=value, written_at=now, expires_at=expires_at)
        try:
            serialized = json.dumps(entry.to_dict())
        except (TypeError, ValueError) as e:
            logger.error(f"Cache set failed for {key}: value is not serializable ({e})")
            return False

        full_key = self._full_key(key)
        if not self._degraded:
            try:
                self._persistent.set(full_key, serialized)
                return True
            except StorageBackendError as e:
                logger.error(f"Storage set error for {key}: {e}")
                self._enter_degraded(e)

        self._memory.set(full_key, serialized)
        return True

    def get(self, key: str) -> Any:
        """Return the cached value, or None if absent, malformed or expired."""
        if not key:
            return None

        full_key = self._full_key(key)
        raw = self._read_raw(full_key)
        if raw is None:
            return None

        try:
            entry = CacheEntry.from_dict(json.loads(raw))
        except ValueError as e:
            logger.debug(f"Malformed cache entry for {key}, treating as miss: {e}")
            return None

        if entry.is_expired(self._now()):
            logger.debug(f"Cache entry {key} expired")
            self.remove(key)
            return None

        return entry.data

    def _read_raw(self, full_key: str) -> Optional[str]:
        if not self._degraded:
            try:
                return self._persistent.get(full_key)
            except StorageBackendError as e:
                logger.error(f"Storage get error for {full_key}: {e}")
                self._enter_degraded(e)
        return self._memory.get(full_key)

    def remove(self, key: str) -> bool:
        if not key:
            return False

        full_key = self._full_key(key)
        if not self._degraded:
            try:
                self._persistent.delete(full_key)
                return True
            except StorageBackendError as e:
                logger.error(f"Storage remove error for {key}: {e}")
                self._enter_degraded(e)
        self._memory.delete(full_key)
        return True

    def clear(self) -> bool:
        """Remove every entry under this cache's prefix, and nothing else."""
        cleared_persistent = True
        if not self._degraded:
            try:
                for full_key in self._persistent.keys(self.prefix):
                    self._persistent.delete(full_key)
            except StorageBackendError as e:
                logger.error(f"Storage clear error: {e}")
                self._enter_degraded(e)
                cleared_persistent = False

        for full_key in self._memory.keys(self.prefix):
            self._memory.delete(full_key)

        logger.info("Storage cleared")
        return cleared_persistent

    # === Introspection ===

    def keys(self, prefix: str = "") -> List[str]:
        """List application keys (without the namespace prefix) starting with ``prefix``."""
        full_prefix = self._full_key(prefix)
        if not self._degraded:
            try:
                full_keys = self._persistent.keys(full_prefix)
                return [k[len(self.prefix):] for k in full_keys]
            except StorageBackendError as e:
                logger.error(f"Storage keys error: {e}")
                self._enter_degraded(e)
        return [k[len(self.prefix):] for k in self._memory.keys(full_prefix)]

    def raw_size(self, key: str) -> int:
        """Size in characters of the stored form of ``key`` (0 if absent)."""
        raw = self._read_raw(self._full_key(key))
        return len(raw) if raw else 0

    def entry(self, key: str) -> Optional[CacheEntry]:
        """Return the full entry (with timestamps) without evaluating expiry."""
        raw = self._read_raw(self._full_key(key))
        if raw is None:
            return None
        try:
            return CacheEntry.from_dict(json.loads(raw))
        except ValueError:
            return None
