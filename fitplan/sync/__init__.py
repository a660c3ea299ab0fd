"""Offline write queue and its reconciliation with the remote service."""

from .connectivity import (
    ConnectivityMonitor,
    ConnectivitySignal,
    HttpHealthSignal,
    StaticSignal,
)
from .queue import SyncQueue
from .reconciler import SYNC_HANDLERS, Reconciler

__all__ = [
    "ConnectivityMonitor",
    "ConnectivitySignal",
    "HttpHealthSignal",
    "Reconciler",
    "StaticSignal",
    "SYNC_HANDLERS",
    "SyncQueue",
]
