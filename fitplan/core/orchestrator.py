"""Load/save orchestration between the local cache, the sync queue and the remote.

Read path:  cache first; when online, refresh from the remote and overwrite
            the cache. A failed refresh keeps the cached value and only logs.
Write path: cache first, always. Online writes go straight to the remote and
            a failure is raised to the caller as RemoteWriteError. Offline
            writes are queued and succeed locally.

The cache is always written before a value is returned, so what callers
render is what the cache holds.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from fitplan.errors import RemoteWriteError
from fitplan.notifications import Notifier
from fitplan.remote.base import RemoteDataService
from fitplan.remote.stats import calculate_streak, compute_stats
from fitplan.storage.cache import KeyValueCache
from fitplan.sync.connectivity import ConnectivityMonitor
from fitplan.sync.queue import SyncQueue
from fitplan.sync.reconciler import Reconciler
from fitplan.types import (
    ACTION_CREATE,
    ACTION_UPDATE,
    COLLECTION_SESSIONS,
    COLLECTION_USERS,
    COLLECTION_WEIGHTS,
    DEFAULT_CITY,
    DEFAULT_PROFILE,
    PROFILE_TTL_HOURS,
    SESSIONS_TTL_HOURS,
    STATS_TTL_HOURS,
    WEATHER_TTL_HOURS,
    WEIGHTS_TTL_HOURS,
    LoadedResource,
    ResourceState,
    UserData,
)
from fitplan.utils import (
    new_id,
    profile_key,
    sessions_key,
    stats_key,
    utc_now,
    weather_key,
    weights_key,
)
from fitplan.weather import WeatherClient

logger = logging.getLogger(__name__)

DEFAULT_SESSIONS_LIMIT = 20
DEFAULT_WEIGHTS_LIMIT = 10


class DataOrchestrator:
    """The application's single entry point for reading and writing user data.

    Every collaborator is injected; nothing here constructs services.

    Args:
        cache: Local expiring cache.
        queue: Offline write queue.
        reconciler: Drains ``queue`` against ``remote``.
        monitor: Connectivity state; the orchestrator subscribes to it and
            drains the queue whenever it reports a transition to online.
        remote: Remote data service.
        notifier: Told about successful syncs. Optional.
        weather: Weather client. Optional; without it weather is cache-only.
        default_city: City used when a profile has none.
    """

    def __init__(
        self,
        cache: KeyValueCache,
        queue: SyncQueue,
        reconciler: Reconciler,
        monitor: ConnectivityMonitor,
        remote: RemoteDataService,
        notifier: Optional[Notifier] = None,
        weather: Optional[WeatherClient] = None,
        default_city: str = DEFAULT_CITY,
    ):
        self._cache = cache
        self._queue = queue
        self._reconciler = reconciler
        self._monitor = monitor
        self._remote = remote
        self._notifier = notifier
        self._weather = weather
        self.default_city = default_city
        self._states: Dict[Tuple[str, str], ResourceState] = {}
        self._unsubscribe: Optional[Callable[[], None]] = monitor.subscribe(
            self._on_connectivity_change
        )

    # === Connectivity & sync ===

    @property
    def is_online(self) -> bool:
        return self._monitor.is_online

    def refresh_connectivity(self) -> bool:
        """Sample the connectivity signal; a transition to online triggers a drain."""
        return self._monitor.refresh()

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            self.sync_now()

    def sync_now(self) -> int:
        """Drain the sync queue. Returns the number of items applied."""
        synced = self._reconciler.drain(self._remote)
        if synced > 0:
            self._notify("Données synchronisées", f"{synced} éléments synchronisés", "success")
        return synced

    def _notify(self, title: str, message: str, level: str) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(title, message, level)
        except Exception as e:
            logger.warning(f"Notifier failed ({title}): {e}")

    @property
    def pending_sync_count(self) -> int:
        return self._queue.pending_count()

    def resource_state(self, kind: str, owner_id: str) -> ResourceState:
        return self._states.get((kind, owner_id), ResourceState.ABSENT)

    def status(self) -> Dict[str, Any]:
        last = self._reconciler.last_result
        return {
            "online": self.is_online,
            "pending": self.pending_sync_count,
            "degraded": self._cache.degraded_mode,
            "storage_mode": self._cache.mode,
            "draining": self._reconciler.is_draining,
            "last_drain": None
            if last is None
            else {
                "applied": last.applied,
                "retained": len(last.retained),
                "dropped": len(last.dropped),
                "skipped": last.skipped,
            },
        }

    # === Read path ===

    def _load(
        self,
        kind: str,
        owner_id: str,
        key: str,
        ttl_hours: float,
        fetch: Callable[[], Any],
    ) -> LoadedResource:
        value = self._cache.get(key)
        state = ResourceState.CACHED if value is not None else ResourceState.ABSENT

        if self.is_online:
            try:
                fresh = fetch()
            except Exception as e:
                logger.warning(f"Remote read of {kind} for {owner_id} failed, using cache: {e}")
            else:
                if fresh is not None:
                    self._cache.set(key, fresh, ttl_hours)
                    value, state = fresh, ResourceState.FRESH

        self._states[(kind, owner_id)] = state
        return LoadedResource(value=value, state=state)

    def get_profile(self, owner_id: str) -> LoadedResource:
        return self._load(
            "profile",
            owner_id,
            profile_key(owner_id),
            PROFILE_TTL_HOURS,
            lambda: self._remote.get_profile(owner_id),
        )

    def get_sessions(self, owner_id: str, limit: int = DEFAULT_SESSIONS_LIMIT) -> LoadedResource:
        loaded = self._load(
            "sessions",
            owner_id,
            sessions_key(owner_id),
            SESSIONS_TTL_HOURS,
            lambda: self._remote.list_sessions(owner_id, limit),
        )
        if loaded.value is None:
            loaded.value = []
        return loaded

    def get_weight_history(
        self, owner_id: str, limit: int = DEFAULT_WEIGHTS_LIMIT
    ) -> LoadedResource:
        loaded = self._load(
            "weights",
            owner_id,
            weights_key(owner_id),
            WEIGHTS_TTL_HOURS,
            lambda: self._remote.list_weight_history(owner_id, limit),
        )
        if loaded.value is None:
            loaded.value = []
        return loaded

    def get_stats(self, owner_id: str) -> LoadedResource:
        return self._load(
            "stats",
            owner_id,
            stats_key(owner_id),
            STATS_TTL_HOURS,
            lambda: self._remote.compute_stats(owner_id),
        )

    def get_weather(self, city: Optional[str] = None) -> LoadedResource:
        city = (city or self.default_city).strip() or self.default_city
        fetch = (lambda: self._weather.current_weather(city)) if self._weather else (lambda: None)
        return self._load("weather", city.lower(), weather_key(city), WEATHER_TTL_HOURS, fetch)

    def load_user_data(self, owner_id: str) -> UserData:
        """Load everything needed for the user's dashboard.

        Pending offline writes are pushed first so the remote refresh does not
        overwrite them in the cache. A user with no profile anywhere gets the
        default profile, saved through the normal write path.
        """
        self._require_owner(owner_id)

        if self.is_online and self._queue.pending_count() > 0:
            self.sync_now()

        profile = self.get_profile(owner_id)
        sessions = self.get_sessions(owner_id)
        weights = self.get_weight_history(owner_id)
        stats = self.get_stats(owner_id)

        if not profile.present:
            default_profile = dict(DEFAULT_PROFILE, city=self.default_city)
            try:
                self.save_profile(owner_id, default_profile, action=ACTION_CREATE)
            except RemoteWriteError as e:
                logger.warning(f"Default profile cached locally only: {e}")
            profile = LoadedResource(default_profile, self.resource_state("profile", owner_id))

        city = profile.value.get("city") or self.default_city
        weather = self.get_weather(city)

        return UserData(
            user_id=owner_id,
            profile=profile,
            sessions=sessions,
            weights=weights,
            stats=stats,
            weather=weather,
            online=self.is_online,
        )

    # === Write path ===

    def _require_owner(self, owner_id: str) -> None:
        if not owner_id or not isinstance(owner_id, str):
            raise ValueError("owner_id must be a non-empty string")

    def _cache_write(self, key: str, value: Any, ttl_hours: float) -> None:
        """Cache a user write; a value the cache refuses must not be reported as saved."""
        if not self._cache.set(key, value, ttl_hours):
            raise ValueError(f"Could not cache {key}: value is not JSON-serializable")

    def _write_remote(self, collection: str, owner_id: str, write: Callable[[], Any]) -> None:
        try:
            write()
        except Exception as e:
            logger.error(f"Remote write to {collection} for {owner_id} failed: {e}")
            raise RemoteWriteError(collection, owner_id, e) from e

    def save_profile(
        self, owner_id: str, profile: Dict[str, Any], action: str = ACTION_UPDATE
    ) -> Dict[str, Any]:
        """Write a profile through the cache, then to the remote or the queue.

        Raises:
            RemoteWriteError: Online and the remote rejected the write. The
                cache already holds the new profile.
        """
        self._require_owner(owner_id)
        if not isinstance(profile, dict) or not profile:
            raise ValueError("profile must be a non-empty mapping")

        profile = dict(profile)
        profile.setdefault("notifications", True)
        self._cache_write(profile_key(owner_id), profile, PROFILE_TTL_HOURS)
        self._states[("profile", owner_id)] = ResourceState.CACHED

        if self.is_online:
            self._write_remote(
                COLLECTION_USERS, owner_id, lambda: self._remote.save_profile(owner_id, profile)
            )
            self._states[("profile", owner_id)] = ResourceState.FRESH
        else:
            self._queue.enqueue(action, COLLECTION_USERS, {"user_id": owner_id, "profile": profile})
        return profile

    def register_user(self, owner_id: str, profile: Dict[str, Any]) -> Dict[str, Any]:
        """Store the profile of a newly created account."""
        saved = self.save_profile(owner_id, profile, action=ACTION_CREATE)
        self._cache.set(stats_key(owner_id), compute_stats([]), STATS_TTL_HOURS)
        return saved

    def update_profile(self, owner_id: str, **changes: Any) -> Dict[str, Any]:
        """Merge ``changes`` into the current profile and save it.

        The base is the cached profile, refreshed from the remote when online,
        so fields not in ``changes`` keep their stored values even after the
        cache entry expired.
        """
        current = self.get_profile(owner_id).value
        if current is None:
            logger.info(f"No profile found for {owner_id}, starting from defaults")
            current = dict(DEFAULT_PROFILE, city=self.default_city)
        return self.save_profile(owner_id, {**current, **changes})

    def add_session(self, owner_id: str, session: Dict[str, Any]) -> Dict[str, Any]:
        """Record a completed activity session.

        The session gets a client-generated ``id`` so a replayed create can be
        deduplicated remotely. Cached stats are bumped locally right away;
        when online they are reloaded from the remote once the session is
        stored.
        """
        self._require_owner(owner_id)
        if not isinstance(session, dict) or not session.get("activity"):
            raise ValueError("session must be a mapping with an activity")

        session_date = session.get("date") or utc_now()
        if hasattr(session_date, "isoformat"):
            session_date = session_date.isoformat()
        session = {
            "completed": True,
            **session,
            "user_id": owner_id,
            "id": session.get("id") or new_id(),
            "date": session_date,
        }

        cached: List[Dict[str, Any]] = self._cache.get(sessions_key(owner_id)) or []
        sessions = [session] + [s for s in cached if s.get("id") != session["id"]]
        self._cache_write(sessions_key(owner_id), sessions, SESSIONS_TTL_HOURS)
        self._cache.set(
            stats_key(owner_id), self._stats_with(owner_id, session, sessions), STATS_TTL_HOURS
        )
        self._states[("sessions", owner_id)] = ResourceState.CACHED

        if self.is_online:
            self._write_remote(
                COLLECTION_SESSIONS, owner_id, lambda: self._remote.add_session(session)
            )
            self.get_stats(owner_id)
        else:
            self._queue.enqueue(ACTION_CREATE, COLLECTION_SESSIONS, session)
        return session

    def _stats_with(
        self, owner_id: str, session: Dict[str, Any], sessions: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Cached stats with ``session`` counted in.

        ``sessions`` is only the cached (limited) history, so totals are
        incremented rather than recomputed from it.
        """
        stats = self._cache.get(stats_key(owner_id))
        if not isinstance(stats, dict):
            return compute_stats(sessions)
        stats = dict(stats)
        if session.get("completed"):
            total = int(stats.get("total_sessions") or 0) + 1
            stats["total_sessions"] = total
            for field, source in (("total_calories", "calories"), ("total_duration", "duration")):
                stats[field] = (stats.get(field) or 0) + (session.get(source) or 0)
            stats["weekly_average"] = round(total / max(1, -(-total // 7)), 1)
        stats["streak_days"] = max(int(stats.get("streak_days") or 0), calculate_streak(sessions))
        return stats

    def add_weight_entry(
        self, owner_id: str, weight: float, notes: Optional[str] = None
    ) -> Dict[str, Any]:
        """Record a weight measurement."""
        self._require_owner(owner_id)
        if isinstance(weight, bool) or not isinstance(weight, (int, float)) or weight <= 0:
            raise ValueError("weight must be a positive number")

        entry = {
            "id": new_id(),
            "user_id": owner_id,
            "weight": weight,
            "notes": notes,
            "date": utc_now(),
        }
        cached: List[Dict[str, Any]] = self._cache.get(weights_key(owner_id)) or []
        self._cache_write(weights_key(owner_id), [entry] + cached, WEIGHTS_TTL_HOURS)
        self._states[("weights", owner_id)] = ResourceState.CACHED

        if self.is_online:
            self._write_remote(
                COLLECTION_WEIGHTS,
                owner_id,
                lambda: self._remote.add_weight_entry(owner_id, weight, notes, entry_id=entry["id"]),
            )
        else:
            self._queue.enqueue(ACTION_CREATE, COLLECTION_WEIGHTS, entry)
        return entry

    # === Lifecycle ===

    def logout(self) -> bool:
        """Forget everything cached locally.

        The sync queue lives in the same namespace, so pending writes are
        pushed first when possible; whatever is still pending is discarded.
        """
        if self.is_online and self._queue.pending_count() > 0:
            self.sync_now()
        pending = self._queue.peek_all()
        if pending:
            logger.warning(f"Logging out with {len(pending)} unsynced changes; they are discarded")
            for item in pending:
                logger.warning(f"Discarded {item.collection}:{item.action} {item.id}")
        self._states.clear()
        return self._cache.clear()

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
