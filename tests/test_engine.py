from __future__ import annotations

import json

import httpx
import pytest

from gcp_provider.auth0 import Auth0Client
from gcp_provider.engine import EngineClient


class StaticTokens:
    def __init__(self, token="service-token"):
        self.token = token
        self.calls = 0

    async def get_api_access_token(self):
        self.calls += 1
        return self.token


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_call_snap_engine_posts_event_with_token():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "success"})

    tokens = StaticTokens()
    async with mock_client(handler) as http:
        engine = EngineClient("https://engine.test/", tokens, http_client=http)
        result = await engine.call_snap_engine("u1", "a1", "pubsub", {"data": {"x": 1}})

    assert result == {"status": "success", "message": "gcp: invoked snap engine at https://engine.test/executesnap/u1/a1"}
    request = seen[0]
    assert str(request.url) == "https://engine.test/executesnap/u1/a1"
    assert request.headers["authorization"] == "Bearer service-token"
    assert json.loads(request.content) == {"event": "pubsub", "data": {"x": 1}}


@pytest.mark.asyncio
async def test_call_snap_engine_mints_token_per_dispatch():
    tokens = StaticTokens()
    async with mock_client(lambda request: httpx.Response(200)) as http:
        engine = EngineClient("https://engine.test", tokens, http_client=http)
        await engine.call_snap_engine("u1", "a1", "pubsub", {})
        await engine.call_snap_engine("u1", "a1", "pubsub", {})

    assert tokens.calls == 2


@pytest.mark.asyncio
async def test_call_snap_engine_without_token():
    def handler(request):
        raise AssertionError("engine should not be called")

    async with mock_client(handler) as http:
        engine = EngineClient("https://engine.test", StaticTokens(token=None), http_client=http)
        assert await engine.call_snap_engine("u1", "a1", "pubsub", {}) is None


def server_error(request):
    return httpx.Response(500, json={"error": "boom"})


def refused(request):
    raise httpx.ConnectError("refused", request=request)


def too_slow(request):
    raise httpx.ReadTimeout("slow", request=request)


@pytest.mark.asyncio
@pytest.mark.parametrize("handler", [server_error, refused, too_slow])
async def test_call_snap_engine_failures_return_none(handler):
    async with mock_client(handler) as http:
        engine = EngineClient("https://engine.test", StaticTokens(), http_client=http)
        assert await engine.call_snap_engine("u1", "a1", "pubsub", {}) is None


@pytest.mark.asyncio
async def test_get_api_access_token():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"access_token": "tok", "token_type": "Bearer"})

    async with mock_client(handler) as http:
        auth0 = Auth0Client("tenant.auth0.test", "https://api.test", "id", "secret", http_client=http)
        token = await auth0.get_api_access_token()

    assert token == "tok"
    assert seen == [
        {
            "grant_type": "client_credentials",
            "client_id": "id",
            "client_secret": "secret",
            "audience": "https://api.test",
        }
    ]


@pytest.mark.asyncio
async def test_get_api_access_token_failure():
    async with mock_client(lambda request: httpx.Response(401, json={"error": "access_denied"})) as http:
        auth0 = Auth0Client("tenant.auth0.test", "https://api.test", "id", "secret", http_client=http)
        assert await auth0.get_api_access_token() is None


@pytest.mark.asyncio
async def test_get_api_access_token_not_configured():
    auth0 = Auth0Client("tenant.auth0.test", "https://api.test")
    assert await auth0.get_api_access_token() is None


@pytest.mark.asyncio
async def test_validate_jwt_without_domain():
    auth0 = Auth0Client("", "https://api.test")
    assert await auth0.validate_jwt("anything") is None


@pytest.mark.asyncio
async def test_validate_jwt_rejects_garbage():
    auth0 = Auth0Client("tenant.auth0.test", "https://api.test")
    # a malformed token fails header decoding before any JWKS fetch
    assert await auth0.validate_jwt("not-a-jwt") is None
