"""
fitplan - offline-first data core for the FitPlan fitness tracker.

Profiles, activity sessions and weight entries are cached locally, written
through to the remote service when online, and queued for later when not.
"""

from .app import FitplanApp, build_app
from .core import DataOrchestrator

try:
    from importlib.metadata import version

    __version__ = version("fitplan")
except Exception:
    __version__ = "0.0.0"

__all__ = ["DataOrchestrator", "FitplanApp", "build_app"]
