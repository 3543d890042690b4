"""Tests for wrapping Starlette handlers with ``with_rate_limit``."""

import time
from unittest.mock import patch

import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.testclient import TestClient

from tiered_ratelimit.adapters.rate_limit.base import RateLimitResult
from tiered_ratelimit.core.errors import ConfigurationAppError, RemoteStoreAppError
from tiered_ratelimit.core.rate_limit import api_key_or_ip, client_ip_key, with_rate_limit


def _ok(remaining: int, limit: int = 5) -> RateLimitResult:
    return RateLimitResult(
        success=True, limit=limit, remaining=remaining, reset_at=time.time() + 60
    )


class Recorder:
    """Async handler counting its invocations."""

    def __init__(self) -> None:
        self.requests: list[Request] = []

    async def __call__(self, request: Request) -> JSONResponse:
        self.requests.append(request)
        return JSONResponse({"ok": True, "path": request.url.path}, status_code=201)


async def recorded_handler(request: Request) -> JSONResponse:
    request.app.state.invocations.append(request.url.path)
    return JSONResponse({"ok": True}, status_code=201)


def _client(handler, get_key, counter, **options) -> TestClient:
    app = FastAPI()
    app.state.invocations = []
    app.add_route("/limited", with_rate_limit(handler, get_key, options, counter=counter))
    return TestClient(app)


def _header_key(request: Request) -> str:
    return request.headers.get("X-User", "")


def test_scenario_limit_two(counter) -> None:
    counter.queue(_ok(2, limit=2))
    client = _client(recorded_handler, _header_key, counter, requests_limit=2, timeframe=60)
    headers = {"X-User": "k"}

    assert client.get("/limited", headers=headers).status_code == 201
    assert client.get("/limited", headers=headers).status_code == 201

    rejected = client.get("/limited", headers=headers)

    assert rejected.status_code == 429
    assert rejected.json() == {
        "error": "Too Many Requests. The limit is 2 requests per 1 minutes."
    }
    assert counter.calls == ["k"]
    assert client.app.state.invocations == ["/limited", "/limited"]


def test_allowed_request_reaches_handler_unchanged(counter) -> None:
    counter.queue(_ok(4))
    client = _client(recorded_handler, _header_key, counter)

    response = client.get("/limited?x=1", headers={"X-User": "k"})

    assert response.status_code == 201
    assert response.json() == {"ok": True}


def test_empty_key_returns_400_without_calling_handler(counter) -> None:
    client = _client(recorded_handler, lambda request: "", counter)

    response = client.get("/limited")

    assert response.status_code == 400
    assert response.json() == {"error": "Unable to determine rate limit key"}
    assert client.app.state.invocations == []
    assert counter.calls == []


def test_none_key_is_treated_as_indeterminate(counter) -> None:
    client = _client(recorded_handler, lambda request: None, counter)

    assert client.get("/limited").status_code == 400


def test_async_key_extractor(counter) -> None:
    async def get_key(request: Request) -> str:
        return f"user:{request.headers['X-User']}"

    counter.queue(_ok(4))
    client = _client(recorded_handler, get_key, counter)

    assert client.get("/limited", headers={"X-User": "42"}).status_code == 201
    assert counter.calls == ["user:42"]


def test_remote_failure_returns_500_and_leaves_cache_empty(counter) -> None:
    counter.queue(RemoteStoreAppError(code="remote_store_unreachable", message="down"))
    handler = with_rate_limit(recorded_handler, _header_key, counter=counter)
    app = FastAPI()
    app.state.invocations = []
    app.add_route("/limited", handler)
    client = TestClient(app)

    response = client.get("/limited", headers={"X-User": "fresh"})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal Server Error"}
    assert app.state.invocations == []
    assert "fresh" not in handler.engine.cache


def test_custom_error_message_and_headers(counter) -> None:
    counter.queue(RateLimitResult(success=False, limit=3, remaining=0, reset_at=time.time() + 30))
    client = _client(
        recorded_handler, _header_key, counter, requests_limit=3, errorMessage="Slow down"
    )

    response = client.get("/limited", headers={"X-User": "k"})

    assert response.status_code == 429
    assert response.json() == {"error": "Slow down"}
    assert response.headers["X-RateLimit-Limit"] == "3"
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert 0 < int(response.headers["Retry-After"]) <= 30
    assert "X-RateLimit-Reset" in response.headers


def test_headers_can_be_disabled(counter) -> None:
    counter.queue(RateLimitResult(success=False, limit=3, remaining=0, reset_at=time.time() + 30))
    client = _client(recorded_handler, _header_key, counter, include_headers=False)

    response = client.get("/limited", headers={"X-User": "k"})

    assert response.status_code == 429
    assert "Retry-After" not in response.headers
    assert "X-RateLimit-Limit" not in response.headers


def test_disable_lru_consults_remote_every_time(counter) -> None:
    counter.default = _ok(4)
    client = _client(recorded_handler, _header_key, counter, disableLRU=True)

    for _ in range(3):
        assert client.get("/limited", headers={"X-User": "k"}).status_code == 201

    assert len(counter.calls) == 3


def test_sync_handler_is_supported(counter) -> None:
    def plain(request: Request) -> PlainTextResponse:
        return PlainTextResponse("plain")

    counter.queue(_ok(4))
    client = _client(plain, _header_key, counter)

    response = client.get("/limited", headers={"X-User": "k"})

    assert response.status_code == 200
    assert response.text == "plain"


def test_callable_object_handler(counter) -> None:
    recorder = Recorder()
    counter.queue(_ok(4))
    client = _client(recorder, _header_key, counter)

    assert client.get("/limited", headers={"X-User": "k"}).status_code == 201
    assert len(recorder.requests) == 1


def test_invalid_options_fail_at_wrap_time(counter) -> None:
    with pytest.raises(ConfigurationAppError) as exc_info:
        with_rate_limit(recorded_handler, _header_key, {"requests_limit": 0}, counter=counter)

    assert exc_info.value.code == "invalid_rate_limit_options"


@patch("tiered_ratelimit.adapters.rate_limit.factory.settings")
def test_missing_credentials_fail_at_wrap_time(mock_settings) -> None:
    mock_settings.upstash.url = None
    mock_settings.upstash.token = None

    with pytest.raises(ConfigurationAppError):
        with_rate_limit(recorded_handler, _header_key)


class TestKeyExtractors:
    def _request(self, headers: dict[str, str], client=("10.0.0.1", 1234)) -> Request:
        scope = {
            "type": "http",
            "method": "GET",
            "path": "/",
            "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
            "client": client,
        }
        return Request(scope)

    def test_client_ip_uses_first_forwarded_hop(self) -> None:
        request = self._request({"X-Forwarded-For": "203.0.113.7, 10.0.0.2"})
        assert client_ip_key(request) == "ip:203.0.113.7"

    def test_client_ip_falls_back_to_peer(self) -> None:
        assert client_ip_key(self._request({})) == "ip:10.0.0.1"

    def test_client_ip_empty_without_peer(self) -> None:
        assert client_ip_key(self._request({}, client=None)) == ""

    def test_api_key_preferred_over_ip(self) -> None:
        request = self._request({"X-API-Key": "abc"})
        assert api_key_or_ip(request) == "api_key:abc"
        assert api_key_or_ip(self._request({})) == "ip:10.0.0.1"
