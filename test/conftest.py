"""Shared fixtures: fake clock, in-memory store, fake Google, broker and app."""
from typing import Any, Dict, List
from urllib.parse import parse_qs

import httpx
import pytest
from key_value.aio.stores.memory import MemoryStore
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from gtm_mcp.config import MCP_PATH
from gtm_mcp.oauth.broker import Broker
from gtm_mcp.oauth.records import RecordCodec
from gtm_mcp.oauth.store import TimeBoundedStore
from gtm_mcp.oauth.upstream import UpstreamExchanger

GOOGLE_AUTHORIZE_URL = "https://accounts.google.test/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.google.test/token"
GOOGLE_USERINFO_URL = "https://www.google.test/oauth2/v2/userinfo"
GOOGLE_REVOKE_URL = "https://oauth2.google.test/revoke"

STATE_SECRET = "test-state-secret-0123456789abcdef"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGoogle:
    """httpx.MockTransport handler standing in for Google's OAuth endpoints."""

    def __init__(self):
        self.token_status = 200
        self.userinfo_status = 200
        self.revoke_status = 200
        self.timeout = False
        self.access_token = "google-access-token"
        self.userinfo: Dict[str, Any] = {"id": "1234567890", "name": "Ada Lovelace", "email": "ada@example.com"}
        self.calls: List[httpx.Request] = []

    def form(self, request: httpx.Request) -> Dict[str, str]:
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}

    def calls_to(self, url: str) -> List[httpx.Request]:
        return [r for r in self.calls if str(r.url) == url]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.timeout:
            raise httpx.ReadTimeout("timed out", request=request)

        url = str(request.url)
        if url == GOOGLE_TOKEN_URL:
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(
                200,
                json={"access_token": self.access_token, "token_type": "Bearer", "expires_in": 3599},
            )
        if url == GOOGLE_USERINFO_URL:
            if self.userinfo_status != 200:
                return httpx.Response(self.userinfo_status, json={"error": "invalid_token"})
            return httpx.Response(200, json=self.userinfo)
        if url == GOOGLE_REVOKE_URL:
            return httpx.Response(self.revoke_status, json={})
        return httpx.Response(404)


@pytest.fixture(autouse=True)
def _no_public_base_url(monkeypatch):
    monkeypatch.delenv("MCP_SERVER_URL", raising=False)
    monkeypatch.delenv("PUBLIC_BASE_URL", raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return TimeBoundedStore(MemoryStore(), clock=clock)


@pytest.fixture
def codec():
    return RecordCodec()


@pytest.fixture
def google():
    return FakeGoogle()


@pytest.fixture
def upstream(google):
    return UpstreamExchanger(
        client_id="google-client-id",
        client_secret="google-client-secret",
        scopes=["openid", "https://www.googleapis.com/auth/tagmanager.readonly"],
        hosted_domain=None,
        authorize_url=GOOGLE_AUTHORIZE_URL,
        token_url=GOOGLE_TOKEN_URL,
        userinfo_url=GOOGLE_USERINFO_URL,
        revoke_url=GOOGLE_REVOKE_URL,
        timeout=5.0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(google)),
    )


@pytest.fixture
def broker(store, codec, upstream):
    return Broker(store, state_secret=STATE_SECRET, upstream=upstream, codec=codec)


async def _echo_context(request: Request) -> JSONResponse:
    return JSONResponse(
        {
            "subject": request.state.oauth_identity.subject,
            "email": request.state.oauth_identity.email,
            "client_id": request.state.client_id,
            "scopes": request.state.scopes,
            "upstream_token": request.state.upstream_token,
        }
    )


@pytest.fixture
def downstream():
    return Starlette(routes=[Route(MCP_PATH, _echo_context, methods=["GET", "POST", "DELETE"])])


@pytest.fixture
def app(broker, downstream):
    from gtm_mcp.oauth.mount_apps import create_app

    return create_app(broker=broker, downstream=downstream)
