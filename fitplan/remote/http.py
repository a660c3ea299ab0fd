"""Remote data service over the fitplan REST backend."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from fitplan.config import FitplanConfig
from fitplan.errors import RemoteUnavailableError
from fitplan.utils import utc_now

logger = logging.getLogger(__name__)


class HttpRemoteService:
    """RemoteDataService backed by an HTTP API.

    Endpoints:
        GET/PUT /users/{id}          profile (404 = no profile)
        GET     /users/{id}/stats
        POST    /sessions            GET /sessions?user_id=..&limit=..
        POST    /weights             GET /weights?user_id=..&limit=..
        GET     /health

    Args:
        backend_url: Base URL, already validated.
        auth_token: Bearer token sent with every request.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        backend_url: str,
        auth_token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not backend_url:
            raise ValueError("backend_url is required")
        headers = {"Accept": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        self.backend_url = backend_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.backend_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: FitplanConfig) -> "HttpRemoteService":
        return cls(config.backend_url, config.auth_token, timeout=config.request_timeout)

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteUnavailableError(f"{method} {path} failed: {e}") from e
        return response

    def _checked(self, response: httpx.Response) -> httpx.Response:
        if response.is_error:
            raise RemoteUnavailableError(
                f"{response.request.method} {response.request.url.path} "
                f"returned {response.status_code}",
                status_code=response.status_code,
            )
        return response

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise RemoteUnavailableError(f"Invalid JSON from {response.request.url.path}: {e}") from e

    # === Profiles ===

    def get_profile(self, owner_id: str) -> Optional[Dict[str, Any]]:
        response = self._request("GET", f"/users/{owner_id}")
        if response.status_code == 404:
            return None
        return self._json(self._checked(response))

    def save_profile(self, owner_id: str, profile: Dict[str, Any]) -> None:
        now = utc_now()
        body = {**profile, "updated_at": now, "created_at": profile.get("created_at") or now}
        self._checked(self._request("PUT", f"/users/{owner_id}", json=body))

    def compute_stats(self, owner_id: str) -> Optional[Dict[str, Any]]:
        response = self._request("GET", f"/users/{owner_id}/stats")
        if response.status_code == 404:
            return None
        return self._json(self._checked(response))

    # === Sessions ===

    def add_session(self, session: Dict[str, Any]) -> str:
        body = {**session, "date": session.get("date") or utc_now()}
        data = self._json(self._checked(self._request("POST", "/sessions", json=body)))
        remote_id = data.get("id") if isinstance(data, dict) else None
        return str(remote_id or session.get("id") or "")

    def list_sessions(self, owner_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        response = self._request("GET", "/sessions", params={"user_id": owner_id, "limit": limit})
        return list(self._json(self._checked(response)))

    # === Weights ===

    def add_weight_entry(
        self,
        owner_id: str,
        weight: float,
        notes: Optional[str] = None,
        entry_id: Optional[str] = None,
    ) -> None:
        body = {"user_id": owner_id, "weight": weight, "notes": notes, "date": utc_now()}
        if entry_id:
            body["id"] = entry_id
        self._checked(self._request("POST", "/weights", json=body))

    def list_weight_history(self, owner_id: str, limit: int = 30) -> List[Dict[str, Any]]:
        response = self._request("GET", "/weights", params={"user_id": owner_id, "limit": limit})
        return list(self._json(self._checked(response)))

    # === Health ===

    def health_check(self) -> bool:
        try:
            response = self._client.get("/health", timeout=5.0)
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False
        return response.status_code == 200
