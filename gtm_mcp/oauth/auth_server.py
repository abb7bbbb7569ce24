# gtm_mcp/oauth/auth_server.py
"""
OAuth 2.0 endpoints of the Google Tag Manager MCP broker.

Implements:
- Authorization Server Metadata (.well-known/oauth-authorization-server) (RFC 8414)
- Protected Resource Metadata (.well-known/oauth-protected-resource) (RFC 9728)
- Dynamic Client Registration (POST /register) (RFC 7591 - minimal)
- GET /authorize   -> redirect to Google with a signed, opaque state
- GET /callback    -> Google redirects back here; we mint our own code
- POST /token      -> our code for our opaque bearer token
- GET|POST /remove -> revoke a user's grant for a client and drop the client

Google never sees our codes or tokens, and downstream clients never see
Google's. Endpoints get their collaborators from `request.app.state.broker`.
"""

import hmac
import logging
import os
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from gtm_mcp.config import DEFAULT_SCOPE, MCP_PATH

from .broker import Broker
from .records import AuthorizationRequest

logger = logging.getLogger("gtm-mcp.auth_server")

MAX_CLIENT_NAME = 256
NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


# -----------------------------
# Utilities
# -----------------------------

def _clean_base_url(url: str) -> str:
    return (url or "").rstrip("/")


def _server_base_url(request: Request) -> str:
    """
    Canonical external base URL for metadata documents and redirects.

    Prefer MCP_SERVER_URL env (recommended in production behind proxies),
    otherwise infer from request headers.
    """
    env = os.getenv("MCP_SERVER_URL") or os.getenv("PUBLIC_BASE_URL")
    if env:
        return _clean_base_url(env)

    proto = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    return _clean_base_url(f"{proto}://{host}")


def _callback_url(request: Request) -> str:
    return f"{_server_base_url(request)}/callback"


def _add_params(url: str, params: Dict[str, Optional[str]]) -> str:
    parsed = urlparse(url)
    q = dict(parse_qsl(parsed.query, keep_blank_values=True))
    q.update({k: v for k, v in params.items() if v is not None})
    return str(urlunparse(parsed._replace(query=urlencode(q))))


def _is_http_url(url: Any) -> bool:
    if not isinstance(url, str) or not url.strip():
        return False
    p = urlparse(url.strip())
    return p.scheme in ("http", "https") and bool(p.netloc)


def _oauth_error(error: str, description: Optional[str] = None, status_code: int = 400) -> JSONResponse:
    body = {"error": error}
    if description:
        body["error_description"] = description
    return JSONResponse(body, status_code=status_code, headers=NO_STORE)


def _broker(request: Request) -> Broker:
    return request.app.state.broker


async def _body_params(request: Request) -> Dict[str, Any]:
    """JSON or form body as a dict; an unreadable body is an empty dict."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            data = await request.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
    form = await request.form()
    return dict(form)


def _str_param(params: Dict[str, Any], name: str) -> str:
    value = params.get(name)
    return value.strip() if isinstance(value, str) else ""


# -----------------------------
# Endpoints
# -----------------------------

async def register_client_endpoint(request: Request) -> JSONResponse:
    """Dynamic Client Registration (minimal)."""
    try:
        data = await request.json()
    except ValueError:
        return _oauth_error("invalid_request", "Expected JSON body")
    if not isinstance(data, dict):
        return _oauth_error("invalid_request", "Expected a JSON object")

    redirect_uris = data.get("redirect_uris")
    if not isinstance(redirect_uris, list) or not redirect_uris:
        return _oauth_error("invalid_redirect_uri", "redirect_uris must be a non-empty list")
    if not all(_is_http_url(u) for u in redirect_uris):
        return _oauth_error("invalid_redirect_uri", "redirect_uris must be http(s) URLs")
    norm_redirects = [u.strip() for u in redirect_uris]

    client_name = data.get("client_name") or "MCP Client"
    if not isinstance(client_name, str):
        return _oauth_error("invalid_client_metadata", "client_name must be a string")
    client_name = client_name.strip() or "MCP Client"
    if len(client_name) > MAX_CLIENT_NAME:
        return _oauth_error("invalid_client_metadata", f"client_name exceeds {MAX_CLIENT_NAME} characters")

    broker = _broker(request)
    client_id, client_secret = await broker.clients.register(norm_redirects, client_name)
    client = await broker.clients.lookup(client_id)

    return JSONResponse(
        {
            "client_id": client_id,
            "client_secret": client_secret,
            "client_secret_expires_at": 0,
            "client_id_issued_at": int(client.created_at) if client else None,
            "client_name": client_name,
            "redirect_uris": norm_redirects,
            "grant_types": ["authorization_code"],
            "response_types": ["code"],
            "token_endpoint_auth_method": "client_secret_post",
        },
        status_code=201,
        headers=NO_STORE,
    )


async def authorize_endpoint(request: Request) -> Response:
    """
    GET /authorize?response_type=code&client_id=...&redirect_uri=...&state=...&scope=...
    """
    q = request.query_params
    client_id = (q.get("client_id") or "").strip()
    redirect_uri = (q.get("redirect_uri") or "").strip()
    response_type = q.get("response_type") or "code"

    if not client_id or not redirect_uri:
        return _oauth_error("invalid_request", "client_id and redirect_uri are required")
    if response_type != "code":
        return _oauth_error("unsupported_response_type", "Only response_type=code is supported")

    broker = _broker(request)
    client = await broker.clients.lookup(client_id)
    if not client:
        # Never redirect to an unverified redirect_uri.
        return _oauth_error("invalid_client", "Unknown client_id")
    if redirect_uri not in client.redirect_uris:
        return _oauth_error("invalid_redirect_uri", "redirect_uri is not registered for this client")

    scopes = (q.get("scope") or "").split() or [DEFAULT_SCOPE]
    auth_request = AuthorizationRequest(
        client_id=client_id,
        redirect_uri=redirect_uri,
        scopes=scopes,
        state=q.get("state") or None,
        response_type=response_type,
        code_challenge=q.get("code_challenge") or None,
        code_challenge_method=q.get("code_challenge_method") or None,
        created_at=broker.store.now(),
    )
    correlation_id = await broker.correlation.begin(auth_request)
    upstream_url = broker.upstream.build_authorize_url(
        redirect_uri=_callback_url(request),
        state=broker.correlation.sign(correlation_id),
    )
    return RedirectResponse(url=upstream_url, status_code=302)


async def callback_endpoint(request: Request) -> Response:
    """
    GET /callback?code=...&state=...   (Google redirects the user here)
    """
    q = request.query_params
    broker = _broker(request)

    correlation_id = broker.correlation.verify(q.get("state") or "")
    if correlation_id is None:
        return _oauth_error("invalid_state", "Invalid or expired state")

    auth_request = await broker.correlation.complete(correlation_id)
    if auth_request is None:
        return _oauth_error("invalid_state", "Invalid or expired state")

    if q.get("error"):
        logger.info("Upstream authorization denied for client=%s: %s", auth_request.client_id, q.get("error"))
        return _oauth_error("access_denied", "The upstream provider did not authorize the request")

    upstream_code = q.get("code")
    if not upstream_code:
        return _oauth_error("invalid_request", "Missing code")

    upstream_token, failure = await broker.upstream.exchange_code(upstream_code, _callback_url(request))
    if failure:
        return _oauth_error("upstream_error", "Failed to exchange code with the upstream provider; restart the authorization")

    identity, failure = await broker.upstream.fetch_identity(upstream_token)
    if failure:
        return _oauth_error("upstream_error", "Failed to fetch the user identity; restart the authorization")

    code = await broker.codes.issue(
        identity,
        auth_request.client_id,
        auth_request.scopes,
        upstream_token=upstream_token,
        redirect_uri=auth_request.redirect_uri,
        code_challenge=auth_request.code_challenge,
        code_challenge_method=auth_request.code_challenge_method,
    )
    await broker.grants.record_grant(identity.subject, auth_request.client_id, auth_request.scopes)

    params = {"code": code, "state": auth_request.state}
    return RedirectResponse(url=_add_params(auth_request.redirect_uri, params), status_code=302)


async def token_endpoint(request: Request) -> JSONResponse:
    """
    POST /token
      grant_type=authorization_code
      code=...
      client_id=...
      client_secret=... (optional; checked when given)
      redirect_uri=...  (optional; checked when given)
      code_verifier=... (accepted, not verified)
    """
    form = await _body_params(request)

    grant_type = _str_param(form, "grant_type")
    code = _str_param(form, "code")
    client_id = _str_param(form, "client_id")
    client_secret = _str_param(form, "client_secret")
    redirect_uri = _str_param(form, "redirect_uri")

    if grant_type != "authorization_code":
        return _oauth_error("unsupported_grant_type", "Only authorization_code is supported")
    if not code or not client_id:
        return _oauth_error("invalid_request", "code and client_id are required")

    broker = _broker(request)
    client = await broker.clients.lookup(client_id)
    if not client:
        return _oauth_error("invalid_grant", "Unknown client_id")
    if client_secret and not broker.clients.verify_secret(client, client_secret):
        return _oauth_error("invalid_client", "Invalid client credentials", status_code=401)

    auth_code = await broker.codes.redeem(code, client_id)
    if auth_code is None:
        return _oauth_error("invalid_grant", "Invalid or expired authorization code")
    if redirect_uri and redirect_uri != auth_code.redirect_uri:
        return _oauth_error("invalid_grant", "Redirect URI mismatch")

    access_token, expires_in = await broker.tokens.mint(
        auth_code.identity,
        client_id,
        auth_code.scopes,
        upstream_token=auth_code.upstream_token,
    )
    return JSONResponse(
        {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": expires_in,
            "scope": " ".join(auth_code.scopes),
        },
        headers=NO_STORE,
    )


async def _owned_upstream_token(broker: Broker, user_id: str, client_id: str, presented: str) -> Optional[str]:
    """The Google token to revoke if `presented` proves the caller holds this user's session."""
    record = await broker.tokens.validate(presented)
    if record is not None:
        if record.identity.subject == user_id and record.client_id == client_id:
            return record.upstream_token
        return None

    for record in await broker.tokens.list_for(user_id, client_id):
        if hmac.compare_digest(record.upstream_token.encode("utf-8"), presented.encode("utf-8")):
            return record.upstream_token
    return None


async def remove_endpoint(request: Request) -> JSONResponse:
    """
    Revoke everything a user granted to one client:
    grants, our tokens, the client itself, then the Google token.

    accessToken must be a live broker token issued to clientId for userId, or
    the Google token held by one. Anything else is rejected before any state
    changes.
    """
    params: Dict[str, Any] = dict(request.query_params)
    if request.method == "POST":
        params.update(await _body_params(request))

    user_id = _str_param(params, "userId")
    client_id = _str_param(params, "clientId")
    access_token = _str_param(params, "accessToken")
    if not user_id or not client_id or not access_token:
        return _oauth_error("invalid_request", "userId, clientId and accessToken are required")

    broker = _broker(request)
    upstream_token = await _owned_upstream_token(broker, user_id, client_id, access_token)
    if upstream_token is None:
        logger.warning("Rejected removal request for user=%s client=%s", user_id, client_id)
        return _oauth_error("invalid_request", "accessToken does not belong to userId and clientId")

    for grant in await broker.grants.list_grants(user_id):
        if grant.client_id == client_id:
            await broker.grants.revoke(grant.grant_id, user_id)
    await broker.tokens.revoke_for(user_id, client_id)
    await broker.clients.remove(client_id)

    failure = await broker.upstream.revoke(upstream_token)
    if failure:
        logger.warning("Upstream token revocation failed for user=%s: %s", user_id, failure.reason)

    return JSONResponse({"status": "OK"})


async def well_known_oauth_server(request: Request) -> JSONResponse:
    base = _server_base_url(request)
    return JSONResponse(
        {
            "issuer": base,
            "authorization_endpoint": f"{base}/authorize",
            "token_endpoint": f"{base}/token",
            "registration_endpoint": f"{base}/register",
            "response_types_supported": ["code"],
            "grant_types_supported": ["authorization_code"],
            "code_challenge_methods_supported": ["S256"],
            "token_endpoint_auth_methods_supported": ["client_secret_post", "none"],
            "scopes_supported": [DEFAULT_SCOPE],
        }
    )


async def well_known_protected_resource(request: Request) -> JSONResponse:
    base = _server_base_url(request)
    return JSONResponse(
        {
            "resource": f"{base}{MCP_PATH}",
            "authorization_servers": [base],
            "bearer_methods_supported": ["header"],
            "scopes_supported": [DEFAULT_SCOPE],
        }
    )


# -----------------------------
# Error handlers
# -----------------------------

async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return JSONResponse({"error": "not_found", "path": request.url.path}, status_code=404)
    if exc.status_code == 405:
        return JSONResponse({"error": "method_not_allowed"}, status_code=405)
    return JSONResponse({"error": "http_error", "error_description": exc.detail}, status_code=exc.status_code)


async def server_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "server_error"}, status_code=500)


EXCEPTION_HANDLERS = {
    HTTPException: http_exception_handler,
    Exception: server_error_handler,
}


def create_auth_routes() -> List[Route]:
    return [
        Route("/register", register_client_endpoint, methods=["POST"]),
        Route("/authorize", authorize_endpoint, methods=["GET"]),
        Route("/callback", callback_endpoint, methods=["GET"]),
        Route("/token", token_endpoint, methods=["POST"]),
        Route("/remove", remove_endpoint, methods=["GET", "POST"]),
        Route("/.well-known/oauth-authorization-server", well_known_oauth_server, methods=["GET"]),
        Route("/.well-known/oauth-protected-resource", well_known_protected_resource, methods=["GET"]),
    ]
