"""Small helpers shared across fitplan."""

import logging
import os
import tempfile
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


def get_fitplan_home() -> Path:
    """Return the fitplan home directory.

    ``FITPLAN_HOME`` overrides the default ``~/.fitplan``. If the default is
    not writable (sandboxed/container/CI environment) the system temp
    directory is used instead.
    """
    override = os.environ.get("FITPLAN_HOME")
    if override:
        return Path(override).expanduser()

    default_home = Path.home() / ".fitplan"
    try:
        default_home.mkdir(parents=True, exist_ok=True)
        return default_home
    except OSError as e:
        fallback = Path(tempfile.gettempdir()) / ".fitplan"
        logger.warning(f"Cannot write to {default_home} ({e}), falling back to {fallback}")
        return fallback


def epoch_now() -> float:
    """Current wall-clock time in epoch seconds."""
    return time.time()


def utc_now() -> str:
    """Current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    """Client-generated identifier for queued items and created records."""
    return uuid.uuid4().hex


def profile_key(owner_id: str) -> str:
    return f"profile:{owner_id}"


def sessions_key(owner_id: str) -> str:
    return f"sessions:{owner_id}"


def weights_key(owner_id: str) -> str:
    return f"weights:{owner_id}"


def stats_key(owner_id: str) -> str:
    return f"stats:{owner_id}"


def weather_key(city: str) -> str:
    return f"weather:{city.strip().lower()}"


def backup_prefix(owner_id: str) -> str:
    return f"backup:{owner_id}:"
