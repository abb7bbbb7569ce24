# gtm_mcp/oauth/upstream.py
"""
Google as the upstream OAuth2 server.

Every call is a single HTTP round trip bounded by UPSTREAM_TIMEOUT. Failures
(non-2xx, timeouts, transport errors, unusable bodies) come back as an
UpstreamFailure value next to the result and are never retried: the upstream
code is single-use, so a retry after a slow success would spend it twice.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import httpx

from gtm_mcp.config import (
    GOOGLE_AUTHORIZE_URL,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REVOKE_URL,
    GOOGLE_SCOPES,
    GOOGLE_TOKEN_URL,
    GOOGLE_USERINFO_URL,
    HOSTED_DOMAIN,
    UPSTREAM_TIMEOUT,
)

from .records import Identity

logger = logging.getLogger("gtm-mcp.upstream")

MAX_ERROR_TEXT = 500


@dataclass(frozen=True)
class UpstreamFailure:
    reason: str  # "rejected" | "timeout" | "unreachable" | "invalid_response"
    status_code: Optional[int] = None
    detail: str = ""


def build_authorize_url(
    upstream_url: str,
    scopes: List[str],
    client_id: str,
    redirect_uri: str,
    state: str,
    hosted_domain: Optional[str] = None,
) -> str:
    parsed = urlparse(upstream_url)
    params: Dict[str, str] = dict(parse_qsl(parsed.query, keep_blank_values=True))
    params.update(
        {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
    )
    if hosted_domain:
        params["hd"] = hosted_domain
    return str(urlunparse(parsed._replace(query=urlencode(params))))


def _truncate(text: str) -> str:
    if text and len(text) > MAX_ERROR_TEXT:
        return text[:MAX_ERROR_TEXT] + "…"
    return text or ""


class UpstreamExchanger:
    def __init__(
        self,
        client_id: str = GOOGLE_CLIENT_ID,
        client_secret: str = GOOGLE_CLIENT_SECRET,
        scopes: Optional[List[str]] = None,
        hosted_domain: Optional[str] = HOSTED_DOMAIN,
        authorize_url: str = GOOGLE_AUTHORIZE_URL,
        token_url: str = GOOGLE_TOKEN_URL,
        userinfo_url: str = GOOGLE_USERINFO_URL,
        revoke_url: str = GOOGLE_REVOKE_URL,
        timeout: float = UPSTREAM_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = list(scopes) if scopes is not None else list(GOOGLE_SCOPES)
        self.hosted_domain = hosted_domain
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.userinfo_url = userinfo_url
        self.revoke_url = revoke_url
        self.timeout = timeout
        self._http_client = http_client

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=False) as client:
            yield client

    def build_authorize_url(self, redirect_uri: str, state: str) -> str:
        return build_authorize_url(
            self.authorize_url,
            scopes=self.scopes,
            client_id=self.client_id,
            redirect_uri=redirect_uri,
            state=state,
            hosted_domain=self.hosted_domain,
        )

    async def _send(self, method: str, url: str, **kwargs) -> Tuple[Optional[httpx.Response], Optional[UpstreamFailure]]:
        try:
            async with self._client() as client:
                resp = await client.request(method, url, timeout=self.timeout, **kwargs)
        except httpx.TimeoutException:
            logger.warning("Upstream %s %s timed out", method, url)
            return None, UpstreamFailure("timeout", detail="Upstream provider timed out")
        except httpx.HTTPError as e:
            logger.warning("Upstream %s %s failed: %s", method, url, type(e).__name__)
            return None, UpstreamFailure("unreachable", detail="Upstream provider unreachable")

        if resp.status_code >= 400:
            logger.info("Upstream %s %s rejected with status=%s", method, url, resp.status_code)
            return None, UpstreamFailure("rejected", status_code=resp.status_code, detail=_truncate(resp.text))
        return resp, None

    async def exchange_code(self, code: str, redirect_uri: str) -> Tuple[Optional[str], Optional[UpstreamFailure]]:
        """Trade Google's authorization code for a Google access token."""
        resp, failure = await self._send(
            "POST",
            self.token_url,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
            headers={"Accept": "application/json"},
        )
        if failure:
            return None, failure

        try:
            data = resp.json()
        except ValueError:
            return None, UpstreamFailure("invalid_response", resp.status_code, "Token response is not JSON")

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not isinstance(access_token, str) or not access_token:
            return None, UpstreamFailure("invalid_response", resp.status_code, "Token response has no access_token")
        return access_token, None

    async def fetch_identity(self, access_token: str) -> Tuple[Optional[Identity], Optional[UpstreamFailure]]:
        resp, failure = await self._send(
            "GET",
            self.userinfo_url,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
        if failure:
            return None, failure

        try:
            data = resp.json()
        except ValueError:
            return None, UpstreamFailure("invalid_response", resp.status_code, "Userinfo response is not JSON")

        if not isinstance(data, dict):
            return None, UpstreamFailure("invalid_response", resp.status_code, "Userinfo response is not an object")

        # v2 userinfo reports "id", the OIDC endpoint reports "sub"
        subject = data.get("id") or data.get("sub")
        if not subject:
            return None, UpstreamFailure("invalid_response", resp.status_code, "Userinfo response has no subject")

        identity = Identity(
            subject=str(subject),
            name=str(data.get("name") or ""),
            email=str(data.get("email") or ""),
        )
        return identity, None

    async def revoke(self, token: str) -> Optional[UpstreamFailure]:
        _, failure = await self._send(
            "POST",
            self.revoke_url,
            data={"token": token},
        )
        return failure
