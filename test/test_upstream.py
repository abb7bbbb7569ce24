"""Tests for the Google upstream exchanger (httpx.MockTransport, no network)."""
from urllib.parse import parse_qs, urlparse

import pytest

from gtm_mcp.oauth.upstream import build_authorize_url

from conftest import GOOGLE_REVOKE_URL, GOOGLE_TOKEN_URL, GOOGLE_USERINFO_URL


class TestBuildAuthorizeUrl:
    def test_parameters(self):
        url = build_authorize_url(
            "https://accounts.google.test/auth",
            scopes=["a", "b"],
            client_id="cid",
            redirect_uri="https://broker.example/callback",
            state="opaque",
            hosted_domain="example.com",
        )
        q = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
        assert q == {
            "client_id": "cid",
            "redirect_uri": "https://broker.example/callback",
            "response_type": "code",
            "scope": "a b",
            "state": "opaque",
            "access_type": "offline",
            "prompt": "consent",
            "hd": "example.com",
        }

    def test_no_hosted_domain(self):
        url = build_authorize_url("https://accounts.google.test/auth", ["a"], "cid", "https://b/cb", "s")
        assert "hd" not in parse_qs(urlparse(url).query)


class TestExchangeCode:
    @pytest.mark.asyncio
    async def test_success(self, upstream, google):
        token, failure = await upstream.exchange_code("g-code", "https://broker.example/callback")
        assert failure is None
        assert token == "google-access-token"

        (call,) = google.calls_to(GOOGLE_TOKEN_URL)
        assert call.method == "POST"
        assert google.form(call) == {
            "client_id": "google-client-id",
            "client_secret": "google-client-secret",
            "code": "g-code",
            "redirect_uri": "https://broker.example/callback",
            "grant_type": "authorization_code",
        }

    @pytest.mark.asyncio
    async def test_rejected(self, upstream, google):
        google.token_status = 400
        token, failure = await upstream.exchange_code("g-code", "https://b/cb")
        assert token is None
        assert failure.reason == "rejected"
        assert failure.status_code == 400

    @pytest.mark.asyncio
    async def test_timeout_not_retried(self, upstream, google):
        google.timeout = True
        token, failure = await upstream.exchange_code("g-code", "https://b/cb")
        assert token is None
        assert failure.reason == "timeout"
        assert len(google.calls_to(GOOGLE_TOKEN_URL)) == 1

    @pytest.mark.asyncio
    async def test_missing_access_token(self, upstream, google):
        google.access_token = ""
        token, failure = await upstream.exchange_code("g-code", "https://b/cb")
        assert token is None
        assert failure.reason == "invalid_response"


class TestFetchIdentity:
    @pytest.mark.asyncio
    async def test_success(self, upstream, google):
        identity, failure = await upstream.fetch_identity("google-access-token")
        assert failure is None
        assert identity.subject == "1234567890"
        assert identity.email == "ada@example.com"

        (call,) = google.calls_to(GOOGLE_USERINFO_URL)
        assert call.headers["authorization"] == "Bearer google-access-token"

    @pytest.mark.asyncio
    async def test_oidc_sub(self, upstream, google):
        google.userinfo = {"sub": "oidc-subject"}
        identity, failure = await upstream.fetch_identity("t")
        assert failure is None
        assert identity.subject == "oidc-subject"
        assert identity.name == ""

    @pytest.mark.asyncio
    async def test_no_subject(self, upstream, google):
        google.userinfo = {"email": "ada@example.com"}
        identity, failure = await upstream.fetch_identity("t")
        assert identity is None
        assert failure.reason == "invalid_response"

    @pytest.mark.asyncio
    async def test_rejected(self, upstream, google):
        google.userinfo_status = 401
        identity, failure = await upstream.fetch_identity("t")
        assert identity is None
        assert failure.reason == "rejected"


class TestRevoke:
    @pytest.mark.asyncio
    async def test_success(self, upstream, google):
        assert await upstream.revoke("google-access-token") is None
        (call,) = google.calls_to(GOOGLE_REVOKE_URL)
        assert google.form(call) == {"token": "google-access-token"}

    @pytest.mark.asyncio
    async def test_failure_reported(self, upstream, google):
        google.revoke_status = 503
        failure = await upstream.revoke("t")
        assert failure.reason == "rejected"
        assert failure.status_code == 503
