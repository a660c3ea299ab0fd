"""Configuration loading for fitplan.

Priority, highest first:
1. Environment variables (FITPLAN_BACKEND_URL, FITPLAN_AUTH_TOKEN, ...)
2. <home>/config.json
3. Built-in defaults
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from fitplan.types import DEFAULT_CITY
from fitplan.utils import get_fitplan_home

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10.0

# Hosts a development backend may run on without TLS.
LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


def validate_backend_url(url: Optional[str], *, allow_localhost_http: bool = True) -> Optional[str]:
    """Return ``url`` without its trailing slash if the auth token may be sent there.

    https URLs with a host are accepted. Plain http is accepted only for a
    loopback host, and only when ``allow_localhost_http`` is set. Anything
    else is logged and ignored, which leaves fitplan without a backend.
    """
    if not url:
        return None

    parsed = urlparse(url)
    local_http = (
        allow_localhost_http and parsed.scheme == "http" and parsed.hostname in LOOPBACK_HOSTS
    )
    if parsed.hostname and (parsed.scheme == "https" or local_http):
        return url.rstrip("/")

    logger.warning(f"Ignoring backend URL {url!r}: use https://<host> (http only for localhost)")
    return None


@dataclass
class FitplanConfig:
    """Resolved runtime configuration."""

    home: Path
    db_path: Path
    backend_url: Optional[str] = None
    auth_token: Optional[str] = None
    user_id: Optional[str] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    default_city: str = DEFAULT_CITY

    @property
    def has_backend(self) -> bool:
        return bool(self.backend_url and self.auth_token)


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.debug(f"Ignoring unreadable config file {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.debug(f"Ignoring config file {path}: expected a JSON object")
        return {}
    return data


def load_config(home: Optional[Path] = None) -> FitplanConfig:
    """Resolve configuration from the environment and ``config.json``."""
    home = Path(home) if home is not None else get_fitplan_home()
    file_config = _read_config_file(home / "config.json")

    backend_url = os.environ.get("FITPLAN_BACKEND_URL") or file_config.get("backend_url")
    auth_token = (
        os.environ.get("FITPLAN_AUTH_TOKEN")
        or file_config.get("auth_token")
        or file_config.get("token")
    )
    user_id = os.environ.get("FITPLAN_USER_ID") or file_config.get("user_id")

    db_path = os.environ.get("FITPLAN_DB_PATH") or file_config.get("db_path")
    db_path = Path(db_path).expanduser() if db_path else home / "cache.db"

    timeout = os.environ.get("FITPLAN_REQUEST_TIMEOUT") or file_config.get("request_timeout")
    try:
        request_timeout = float(timeout) if timeout is not None else DEFAULT_REQUEST_TIMEOUT
    except (TypeError, ValueError):
        logger.warning(f"Invalid request_timeout {timeout!r}, using {DEFAULT_REQUEST_TIMEOUT}")
        request_timeout = DEFAULT_REQUEST_TIMEOUT

    return FitplanConfig(
        home=home,
        db_path=db_path,
        backend_url=validate_backend_url(backend_url),
        auth_token=auth_token,
        user_id=user_id,
        request_timeout=request_timeout,
        default_city=file_config.get("default_city") or DEFAULT_CITY,
    )
