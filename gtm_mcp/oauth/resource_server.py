# gtm_mcp/oauth/resource_server.py

"""
Bearer-token guard for the protected MCP endpoint.

- Missing, malformed, unknown, expired or revoked tokens all get the same
  401: same body, same WWW-Authenticate header. A caller cannot tell which
  case it hit.
- A valid token passes the request downstream with the validated context on
  `request.state`:
    oauth_identity  -> Identity of the user
    upstream_token  -> delegated Google credential (for gtm_mcp/api_client.py)
    client_id       -> the downstream client the token was issued to
    scopes          -> scopes of the token
"""

import logging
from typing import Callable, Dict

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from gtm_mcp.config import DEFAULT_SCOPE

from .auth_server import _server_base_url

logger = logging.getLogger("gtm-mcp.resource_server")


def _bearer_challenge_headers(request: Request) -> Dict[str, str]:
    """
    WWW-Authenticate per RFC 6750 with a pointer to Protected Resource Metadata discovery.
    """
    meta = f"{_server_base_url(request)}/.well-known/oauth-protected-resource"
    parts = [
        'Bearer realm="gtm-mcp"',
        f'resource_metadata="{meta}"',
        f'scope="{DEFAULT_SCOPE}"',
        'error="invalid_token"',
    ]
    return {
        "WWW-Authenticate": ", ".join(parts),
        "Cache-Control": "no-store",
        "Pragma": "no-cache",
    }


def _unauthorized(request: Request) -> JSONResponse:
    return JSONResponse(
        {"error": "unauthorized", "error_description": "Missing, invalid or expired token"},
        status_code=401,
        headers=_bearer_challenge_headers(request),
    )


def _bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """
    Protect an ASGI app with the broker's opaque bearer tokens.

    The broker is looked up on `request.app.state.broker`.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        token = _bearer_token(request)
        if not token:
            return _unauthorized(request)

        record = await request.app.state.broker.tokens.validate(token)
        if record is None:
            logger.debug("Rejected bearer token on %s", request.url.path)
            return _unauthorized(request)

        request.state.oauth_identity = record.identity
        request.state.upstream_token = record.upstream_token
        request.state.client_id = record.client_id
        request.state.scopes = list(record.scopes)

        return await call_next(request)
