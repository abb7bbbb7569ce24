"""Tests for the Tag Manager API client and the MCP tools built on it."""
import json
from types import SimpleNamespace

import httpx
import pytest

from gtm_mcp import api_client
from gtm_mcp.config import GTM_API_BASE
from gtm_mcp.oauth.records import Identity
from gtm_mcp.tools import register_all


class RecordingMCP:
    """Collects the functions registered with @mcp.tool(...)."""

    def __init__(self):
        self.tools = {}

    def tool(self, *args, **kwargs):
        def decorator(fn):
            self.tools[fn.__name__] = fn
            return fn

        return decorator


@pytest.fixture
def tools():
    mcp = RecordingMCP()
    register_all(mcp)
    return mcp.tools


@pytest.fixture
def gtm_api(monkeypatch):
    """Fake Tag Manager API behind the shared httpx client."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        path = request.url.path
        if path.endswith("/accounts"):
            return httpx.Response(200, json={"account": [{"accountId": "1", "name": "Main"}]})
        if path.endswith("/accounts/1/containers"):
            return httpx.Response(200, json={"container": [{"containerId": "9", "publicId": "GTM-ABC"}]})
        return httpx.Response(404, text="not found")

    monkeypatch.setattr(api_client, "_client", httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    return seen


def _with_request_state(monkeypatch, **state):
    request = SimpleNamespace(state=SimpleNamespace(**state))
    monkeypatch.setattr(api_client, "get_http_request", lambda: request)


def _no_request(monkeypatch):
    def raise_no_request():
        raise RuntimeError("No active HTTP request found.")

    monkeypatch.setattr(api_client, "get_http_request", raise_no_request)


class TestRegistry:
    def test_all_tools_registered(self, tools):
        assert set(tools) == {"get_user_info", "list_accounts", "list_containers"}


class TestMakeRequest:
    @pytest.mark.asyncio
    async def test_uses_delegated_credential(self, monkeypatch, gtm_api):
        _with_request_state(monkeypatch, upstream_token="google-access-token")
        data = await api_client.make_request(f"{GTM_API_BASE}/accounts")
        assert data["account"][0]["accountId"] == "1"
        assert gtm_api[0].headers["authorization"] == "Bearer google-access-token"

    @pytest.mark.asyncio
    async def test_no_credential(self, monkeypatch, gtm_api):
        _no_request(monkeypatch)
        data = await api_client.make_request(f"{GTM_API_BASE}/accounts")
        assert "error" in data
        assert gtm_api == []

    @pytest.mark.asyncio
    async def test_http_error(self, monkeypatch, gtm_api):
        _with_request_state(monkeypatch, upstream_token="t")
        data = await api_client.make_request(f"{GTM_API_BASE}/unknown")
        assert data["status_code"] == 404

    @pytest.mark.asyncio
    async def test_unsupported_method(self, monkeypatch, gtm_api):
        _with_request_state(monkeypatch, upstream_token="t")
        data = await api_client.make_request(f"{GTM_API_BASE}/accounts", method="PATCH")
        assert data["error"].startswith("Unsupported HTTP method")


class TestTools:
    @pytest.mark.asyncio
    async def test_get_user_info(self, monkeypatch, tools):
        _with_request_state(monkeypatch, oauth_identity=Identity(subject="alice", email="alice@example.com"))
        result = json.loads(await tools["get_user_info"]())
        assert result == {"subject": "alice", "name": "", "email": "alice@example.com"}

    @pytest.mark.asyncio
    async def test_get_user_info_without_request(self, monkeypatch, tools):
        _no_request(monkeypatch)
        assert "error" in json.loads(await tools["get_user_info"]())

    @pytest.mark.asyncio
    async def test_list_accounts(self, monkeypatch, tools, gtm_api):
        _with_request_state(monkeypatch, upstream_token="t")
        result = json.loads(await tools["list_accounts"]())
        assert result == [{"accountId": "1", "name": "Main"}]

    @pytest.mark.asyncio
    async def test_list_containers(self, monkeypatch, tools, gtm_api):
        _with_request_state(monkeypatch, upstream_token="t")
        result = json.loads(await tools["list_containers"]("1"))
        assert result == [{"containerId": "9", "publicId": "GTM-ABC"}]
        assert gtm_api[0].url.path.endswith("/accounts/1/containers")

    @pytest.mark.asyncio
    async def test_list_containers_requires_account(self, tools):
        assert "error" in json.loads(await tools["list_containers"](" "))

    @pytest.mark.asyncio
    async def test_api_error_surfaced(self, monkeypatch, tools, gtm_api):
        _no_request(monkeypatch)
        assert "error" in json.loads(await tools["list_accounts"]())
