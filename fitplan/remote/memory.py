"""In-process remote data service.

Stands in for the backend in tests and offline demos. Writes keyed by a
client-generated ``id`` are idempotent, the way the real backend is
expected to behave for replayed creates.
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional

from fitplan.errors import RemoteUnavailableError
from fitplan.utils import new_id, utc_now

from .stats import compute_stats

logger = logging.getLogger(__name__)


class InMemoryRemoteService:
    """RemoteDataService kept in dicts.

    Args:
        fail: When True every call raises RemoteUnavailableError.
        delay: Seconds to sleep in every write, to simulate latency.
    """

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.sessions: List[Dict[str, Any]] = []
        self.weights: List[Dict[str, Any]] = []
        self.write_calls: List[tuple] = []
        self._lock = threading.Lock()

    def _check(self, operation: str) -> None:
        if self.fail:
            raise RemoteUnavailableError(f"{operation}: remote unavailable")

    def _write(self, operation: str) -> None:
        self._check(operation)
        if self.delay:
            time.sleep(self.delay)

    # === Profiles ===

    def get_profile(self, owner_id: str) -> Optional[Dict[str, Any]]:
        self._check("get_profile")
        profile = self.profiles.get(owner_id)
        return dict(profile) if profile is not None else None

    def save_profile(self, owner_id: str, profile: Dict[str, Any]) -> None:
        self._write("save_profile")
        now = utc_now()
        with self._lock:
            self.write_calls.append(("save_profile", owner_id, dict(profile)))
            existing = self.profiles.get(owner_id, {})
            merged = {**existing, **profile, "updated_at": now}
            merged.setdefault("created_at", now)
            self.profiles[owner_id] = merged

    def compute_stats(self, owner_id: str) -> Optional[Dict[str, Any]]:
        self._check("compute_stats")
        return compute_stats(self.list_sessions(owner_id, limit=100))

    # === Sessions ===

    def add_session(self, session: Dict[str, Any]) -> str:
        self._write("add_session")
        with self._lock:
            self.write_calls.append(("add_session", dict(session)))
            session_id = session.get("id") or new_id()
            if any(s["id"] == session_id for s in self.sessions):
                logger.debug(f"Duplicate session {session_id} ignored")
                return session_id
            self.sessions.append({**session, "id": session_id, "date": session.get("date") or utc_now()})
        return session_id

    def list_sessions(self, owner_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        self._check("list_sessions")
        owned = [dict(s) for s in self.sessions if s.get("user_id") == owner_id]
        owned.sort(key=lambda s: str(s.get("date", "")), reverse=True)
        return owned[:limit]

    # === Weights ===

    def add_weight_entry(
        self,
        owner_id: str,
        weight: float,
        notes: Optional[str] = None,
        entry_id: Optional[str] = None,
    ) -> None:
        self._write("add_weight_entry")
        with self._lock:
            self.write_calls.append(("add_weight_entry", owner_id, weight, notes))
            entry_id = entry_id or new_id()
            if any(w["id"] == entry_id for w in self.weights):
                logger.debug(f"Duplicate weight entry {entry_id} ignored")
                return
            self.weights.append(
                {"id": entry_id, "user_id": owner_id, "weight": weight, "notes": notes, "date": utc_now()}
            )

    def list_weight_history(self, owner_id: str, limit: int = 30) -> List[Dict[str, Any]]:
        self._check("list_weight_history")
        owned = [dict(w) for w in self.weights if w.get("user_id") == owner_id]
        owned.sort(key=lambda w: str(w.get("date", "")), reverse=True)
        return owned[:limit]

    # === Health ===

    def health_check(self) -> bool:
        return not self.fail
