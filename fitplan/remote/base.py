"""Contract for the remote data service.

Any implementation may fail with RemoteUnavailableError (or anything
else); the core treats every failure the same way: remote unavailable.
"""

from abc import abstractmethod
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class RemoteDataService(Protocol):
    """Remote source of truth for profiles, sessions and weight entries."""

    @abstractmethod
    def get_profile(self, owner_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored profile, or None if the user has none."""
        ...

    @abstractmethod
    def save_profile(self, owner_id: str, profile: Dict[str, Any]) -> None:
        """Create or merge the user's profile."""
        ...

    @abstractmethod
    def add_session(self, session: Dict[str, Any]) -> str:
        """Store an activity session. Returns its id."""
        ...

    @abstractmethod
    def list_sessions(self, owner_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent sessions first."""
        ...

    @abstractmethod
    def add_weight_entry(
        self,
        owner_id: str,
        weight: float,
        notes: Optional[str] = None,
        entry_id: Optional[str] = None,
    ) -> None:
        """Store a weight entry. ``entry_id`` lets replays be deduplicated."""
        ...

    @abstractmethod
    def list_weight_history(self, owner_id: str, limit: int = 30) -> List[Dict[str, Any]]:
        """Most recent weight entries first."""
        ...

    @abstractmethod
    def compute_stats(self, owner_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """True if the service is reachable."""
        ...
