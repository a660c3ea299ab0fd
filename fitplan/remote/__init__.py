"""Remote data service implementations."""

from .base import RemoteDataService
from .http import HttpRemoteService
from .memory import InMemoryRemoteService
from .stats import compute_stats

__all__ = [
    "HttpRemoteService",
    "InMemoryRemoteService",
    "RemoteDataService",
    "compute_stats",
]
