"""
Shared types for fitplan.

The cache, the sync queue, the reconciler and the orchestrator all speak
in terms of these dataclasses and constants. Domain records (profiles,
sessions, weight entries) stay plain dicts: the core only transports
and caches them.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

# === Storage layout ===

NAMESPACE_PREFIX = "fitness_app_"
SYNC_QUEUE_KEY = "sync_queue"

# Cache TTLs in hours (None = never expires)
PROFILE_TTL_HOURS = 48
SESSIONS_TTL_HOURS = 24
WEIGHTS_TTL_HOURS = 24
STATS_TTL_HOURS = 12
WEATHER_TTL_HOURS = 1
BACKUP_TTL_HOURS = 7 * 24

MAX_BACKUPS_PER_USER = 5
BACKUP_VERSION = "1.0"
EXPORT_VERSION = "1.0"

# === Sync queue ===

MAX_SYNC_RETRIES = 3
# Bump when the payload shape of queued items changes.
QUEUE_SCHEMA_VERSION = 1

ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_DELETE = "delete"
SYNC_ACTIONS = frozenset({ACTION_CREATE, ACTION_UPDATE, ACTION_DELETE})

COLLECTION_USERS = "users"
COLLECTION_SESSIONS = "sessions"
COLLECTION_WEIGHTS = "weights"
SYNC_COLLECTIONS = frozenset({COLLECTION_USERS, COLLECTION_SESSIONS, COLLECTION_WEIGHTS})

# === Defaults carried over from the mobile app ===

DEFAULT_CITY = "Paris"

DEFAULT_PROFILE: Dict[str, Any] = {
    "name": "Utilisateur",
    "weight": 70,
    "height": 170,
    "age": 30,
    "goal": "Améliorer ma forme",
    "max_duration": 60,
    "preferred_activity": "marche",
    "rest_days": ["dimanche"],
    "city": DEFAULT_CITY,
    "notifications": True,
    "weekly_goal": 5,
    "fitness_level": "débutant",
}


@dataclass
class CacheEntry:
    """A cached value with its write time and optional expiry (epoch seconds)."""

    data: Any
    written_at: float
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {"data": self.data, "written_at": self.written_at, "expires_at": self.expires_at}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "CacheEntry":
        """Build an entry from its stored form.

        Raises:
            ValueError: If the stored form is not a well-formed entry.
        """
        if not isinstance(raw, dict) or "data" not in raw or "written_at" not in raw:
            raise ValueError("Malformed cache entry")
        expires_at = raw.get("expires_at")
        if expires_at is not None and not isinstance(expires_at, (int, float)):
            raise ValueError("Malformed cache entry expiry")
        try:
            written_at = float(raw["written_at"])
        except (TypeError, ValueError) as e:
            raise ValueError(f"Malformed cache entry timestamp: {e}") from e
        return cls(data=raw["data"], written_at=written_at, expires_at=expires_at)


@dataclass
class SyncQueueItem:
    """A mutation waiting to be applied to the remote data service."""

    id: str
    action: str  # 'create', 'update', 'delete'
    collection: str  # 'users', 'sessions', 'weights'
    payload: Dict[str, Any]
    enqueued_at: float
    retry_count: int = 0
    schema_version: int = QUEUE_SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], default_schema_version: int = QUEUE_SCHEMA_VERSION):
        """Build an item from its persisted form.

        Raises:
            ValueError: If a required field is missing or has the wrong type.
        """
        try:
            item = cls(
                id=str(raw["id"]),
                action=str(raw["action"]),
                collection=str(raw["collection"]),
                payload=raw["payload"],
                enqueued_at=float(raw.get("enqueued_at", 0.0)),
                retry_count=int(raw.get("retry_count", 0)),
                schema_version=int(raw.get("schema_version", default_schema_version)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed sync queue item: {e}") from e
        if not isinstance(item.payload, dict):
            raise ValueError("Malformed sync queue item: payload must be a mapping")
        if item.retry_count < 0:
            raise ValueError("Malformed sync queue item: negative retry_count")
        return item


@dataclass
class DrainResult:
    """Outcome of one reconciler pass."""

    applied: int = 0
    retained: List[SyncQueueItem] = field(default_factory=list)
    dropped: List[SyncQueueItem] = field(default_factory=list)
    skipped: int = 0  # Items left untouched (unknown schema version)
    ran: bool = False  # False when the pass was skipped (offline or already draining)

    @property
    def success(self) -> bool:
        return not self.retained and not self.dropped


class ResourceState(str, Enum):
    """Freshness of a resource as last loaded by the orchestrator."""

    ABSENT = "absent"
    CACHED = "cached"
    FRESH = "fresh"


@dataclass
class LoadedResource:
    """A resource value plus where it came from."""

    value: Any
    state: ResourceState

    @property
    def present(self) -> bool:
        return self.state != ResourceState.ABSENT


@dataclass
class UserData:
    """Everything the shell needs to render a user's dashboard."""

    user_id: str
    profile: LoadedResource
    sessions: LoadedResource
    weights: LoadedResource
    stats: LoadedResource
    weather: Optional[LoadedResource] = None
    online: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"user_id": self.user_id, "online": self.online}
        for name in ("profile", "sessions", "weights", "stats", "weather"):
            resource = getattr(self, name)
            if resource is None:
                result[name] = None
                continue
            result[name] = {"value": resource.value, "state": resource.state.value}
        return result
