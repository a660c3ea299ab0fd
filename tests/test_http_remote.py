"""Tests for the HTTP remote data service (httpx.MockTransport)."""

import json

import httpx
import pytest

from fitplan.errors import RemoteUnavailableError
from fitplan.remote import HttpRemoteService, RemoteDataService


class Backend:
    """Records requests and answers from a route table."""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404)
        return handler(request)


@pytest.fixture
def backend():
    return Backend()


@pytest.fixture
def service(backend):
    service = HttpRemoteService(
        "https://api.example.com/", "secret-token", transport=httpx.MockTransport(backend)
    )
    yield service
    service.close()


def test_satisfies_protocol(service):
    assert isinstance(service, RemoteDataService)


def test_requires_backend_url():
    with pytest.raises(ValueError):
        HttpRemoteService("")


class TestProfiles:
    def test_get_profile(self, service, backend):
        backend.routes[("GET", "/users/u1")] = lambda r: httpx.Response(200, json={"name": "Alice"})

        assert service.get_profile("u1") == {"name": "Alice"}
        assert backend.requests[0].headers["Authorization"] == "Bearer secret-token"

    def test_missing_profile_is_none(self, service):
        assert service.get_profile("nobody") is None

    def test_save_profile_puts_timestamps(self, service, backend):
        backend.routes[("PUT", "/users/u1")] = lambda r: httpx.Response(200, json={})

        service.save_profile("u1", {"name": "Alice"})

        body = json.loads(backend.requests[0].content)
        assert body["name"] == "Alice"
        assert body["updated_at"]
        assert body["created_at"]

    def test_server_error_raises(self, service, backend):
        backend.routes[("PUT", "/users/u1")] = lambda r: httpx.Response(500)

        with pytest.raises(RemoteUnavailableError) as exc_info:
            service.save_profile("u1", {"name": "Alice"})
        assert exc_info.value.status_code == 500

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        service = HttpRemoteService("https://api.example.com", transport=httpx.MockTransport(handler))
        with pytest.raises(RemoteUnavailableError):
            service.get_profile("u1")

    def test_invalid_json_raises(self, service, backend):
        backend.routes[("GET", "/users/u1")] = lambda r: httpx.Response(200, content=b"<html>")
        with pytest.raises(RemoteUnavailableError):
            service.get_profile("u1")


class TestCollections:
    def test_add_session_returns_remote_id(self, service, backend):
        backend.routes[("POST", "/sessions")] = lambda r: httpx.Response(201, json={"id": "srv-1"})

        assert service.add_session({"id": "s1", "activity": "yoga"}) == "srv-1"
        body = json.loads(backend.requests[0].content)
        assert body["id"] == "s1"
        assert body["date"]

    def test_add_session_falls_back_to_client_id(self, service, backend):
        backend.routes[("POST", "/sessions")] = lambda r: httpx.Response(201, json=[])
        assert service.add_session({"id": "s1", "activity": "yoga"}) == "s1"

    def test_list_sessions_params(self, service, backend):
        backend.routes[("GET", "/sessions")] = lambda r: httpx.Response(200, json=[{"id": "s1"}])

        assert service.list_sessions("u1", limit=5) == [{"id": "s1"}]
        params = backend.requests[0].url.params
        assert params["user_id"] == "u1"
        assert params["limit"] == "5"

    def test_add_weight_entry_sends_client_id(self, service, backend):
        backend.routes[("POST", "/weights")] = lambda r: httpx.Response(201, json={})

        service.add_weight_entry("u1", 70.5, "matin", entry_id="w1")

        body = json.loads(backend.requests[0].content)
        assert body["id"] == "w1"
        assert body["weight"] == 70.5
        assert body["notes"] == "matin"

    def test_stats(self, service, backend):
        backend.routes[("GET", "/users/u1/stats")] = lambda r: httpx.Response(
            200, json={"total_sessions": 3}
        )
        assert service.compute_stats("u1") == {"total_sessions": 3}


class TestHealth:
    def test_health_ok(self, service, backend):
        backend.routes[("GET", "/health")] = lambda r: httpx.Response(200)
        assert service.health_check() is True

    def test_health_down(self, service):
        assert service.health_check() is False
