"""Local backups and export/import of a user's cached data."""

import json
import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from fitplan.types import (
    BACKUP_TTL_HOURS,
    BACKUP_VERSION,
    EXPORT_VERSION,
    MAX_BACKUPS_PER_USER,
    PROFILE_TTL_HOURS,
    SESSIONS_TTL_HOURS,
    STATS_TTL_HOURS,
)
from fitplan.utils import (
    backup_prefix,
    epoch_now,
    profile_key,
    sessions_key,
    stats_key,
    utc_now,
)

from .cache import KeyValueCache

if TYPE_CHECKING:
    from fitplan.sync.queue import SyncQueue

logger = logging.getLogger(__name__)


def _format_kb(size: int) -> str:
    return f"{size / 1024:.2f} KB"


class BackupManager:
    """Snapshots, export and import of the cached profile, sessions and stats.

    Args:
        cache: Cache holding the user data (and the backups themselves).
        queue: Sync queue, included in exports.
        max_backups: Backups kept per user; older ones are pruned.
    """

    def __init__(
        self,
        cache: KeyValueCache,
        queue: "SyncQueue",
        max_backups: int = MAX_BACKUPS_PER_USER,
        now_fn: Callable[[], float] = epoch_now,
    ):
        self._cache = cache
        self._queue = queue
        self.max_backups = max_backups
        self._now = now_fn

    def _snapshot(self, user_id: str) -> Dict[str, Any]:
        return {
            "profile": self._cache.get(profile_key(user_id)),
            "sessions": self._cache.get(sessions_key(user_id)),
            "stats": self._cache.get(stats_key(user_id)),
        }

    # === Backups ===

    def create_backup(self, user_id: str) -> Optional[str]:
        """Snapshot the user's cached data. Returns the backup key."""
        if not user_id:
            return None

        timestamp = int(self._now() * 1000)
        backup = {
            "user_id": user_id,
            **self._snapshot(user_id),
            "timestamp": timestamp,
            "version": BACKUP_VERSION,
        }
        key = f"{backup_prefix(user_id)}{timestamp}"
        if not self._cache.set(key, backup, BACKUP_TTL_HOURS):
            logger.error(f"Auto backup failed for {user_id}")
            return None
        self.cleanup_old_backups(user_id)
        logger.debug(f"Backup {key} created")
        return key

    def _backup_keys(self, user_id: str) -> List[str]:
        """Backup keys for ``user_id``, newest first."""

        def timestamp_of(key: str) -> int:
            try:
                return int(key.rsplit(":", 1)[-1])
            except ValueError:
                return 0

        return sorted(self._cache.keys(backup_prefix(user_id)), key=timestamp_of, reverse=True)

    def cleanup_old_backups(self, user_id: str) -> int:
        """Prune all but the newest ``max_backups``. Returns how many were removed."""
        stale = self._backup_keys(user_id)[self.max_backups:]
        for key in stale:
            self._cache.remove(key)
        return len(stale)

    def list_backups(self, user_id: str) -> List[Dict[str, Any]]:
        backups = []
        for key in self._backup_keys(user_id):
            try:
                timestamp = int(key.rsplit(":", 1)[-1])
            except ValueError:
                timestamp = 0
            backups.append(
                {"key": key, "timestamp": timestamp, "size": _format_kb(self._cache.raw_size(key))}
            )
        return backups

    def restore_backup(self, backup_key: str, apply: bool = False) -> Optional[Dict[str, Any]]:
        """Return the contents of a backup, optionally re-caching them."""
        if not backup_key:
            return None
        backup = self._cache.get(backup_key)
        if not isinstance(backup, dict):
            return None
        logger.info(f"Backup restored from {backup.get('timestamp')}")
        if apply and backup.get("user_id"):
            self._recache(backup["user_id"], backup)
        return backup

    # === Export / import ===

    def export_user_data(self, user_id: str) -> Optional[str]:
        if not user_id:
            logger.warning("Cannot export: no user_id provided")
            return None

        export = {
            **self._snapshot(user_id),
            "sync_queue": [item.to_dict() for item in self._queue.items_for_owner(user_id)],
            "export_date": utc_now(),
            "version": EXPORT_VERSION,
        }
        return json.dumps(export, indent=2, default=str)

    def import_user_data(self, user_id: str, json_data: str) -> bool:
        if not user_id or not json_data:
            logger.warning("Invalid parameters for import")
            return False
        try:
            data = json.loads(json_data)
        except ValueError as e:
            logger.error(f"Import error: {e}")
            return False
        if not isinstance(data, dict):
            logger.error("Import error: expected a JSON object")
            return False

        self._recache(user_id, data)
        logger.info(f"Data imported for user {user_id}")
        return True

    def _recache(self, user_id: str, data: Dict[str, Any]) -> None:
        if isinstance(data.get("profile"), dict):
            self._cache.set(profile_key(user_id), data["profile"], PROFILE_TTL_HOURS)
        if isinstance(data.get("sessions"), list):
            self._cache.set(sessions_key(user_id), data["sessions"], SESSIONS_TTL_HOURS)
        if isinstance(data.get("stats"), dict):
            self._cache.set(stats_key(user_id), data["stats"], STATS_TTL_HOURS)

    # === Diagnostics ===

    def storage_info(self) -> Dict[str, Any]:
        keys = self._cache.keys()
        app_size = sum(self._cache.raw_size(key) for key in keys)
        return {
            "mode": self._cache.mode,
            "degraded": self._cache.degraded_mode,
            "entries": len(keys),
            "app_data_size": _format_kb(app_size),
        }


class AutoBackup:
    """Runs ``create_backup`` for one user on a fixed interval in a daemon thread."""

    def __init__(self, manager: BackupManager, user_id: str, interval: float = 5 * 60):
        if not user_id:
            raise ValueError("Cannot enable auto backup: no user_id provided")
        self._manager = manager
        self.user_id = user_id
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name=f"fitplan-backup-{self.user_id}", daemon=True
        )
        self._thread.start()
        logger.info(f"Auto backup enabled for user {self.user_id}")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self._manager.create_backup(self.user_id)
            except Exception as e:
                logger.error(f"Auto backup error: {e}", exc_info=True)
