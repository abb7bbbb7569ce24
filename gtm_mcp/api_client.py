# gtm_mcp/api_client.py

from typing import Any, Dict, Optional

import httpx
from fastmcp.server.dependencies import get_http_request

from gtm_mcp.oauth.records import Identity

# Reuse a single async client to avoid per-request connection overhead.
_client: Optional[httpx.AsyncClient] = None

MAX_ERROR_TEXT = 2000


async def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient()
    return _client


def _request_state() -> Any:
    try:
        req = get_http_request()
    except RuntimeError:
        # No active HTTP request (e.g. the tool is called outside the HTTP transport)
        return None
    return getattr(req, "state", None)


def current_identity() -> Optional[Identity]:
    """Identity the bearer guard validated for the current request."""
    return getattr(_request_state(), "oauth_identity", None)


def _upstream_token() -> Optional[str]:
    token = getattr(_request_state(), "upstream_token", None)
    return str(token).strip() if token else None


async def make_request(
    url: str,
    method: str = "GET",
    json_body: Optional[Dict[str, Any]] = None,
    timeout: float = 30.0,
) -> Dict[str, Any]:
    """
    Call the Tag Manager API on behalf of the current user.

    - Uses the delegated Google credential of the validated token.
    - Returns parsed JSON dict on success, or {"error": "..."} on failure.
    """
    token = _upstream_token()
    if not token:
        return {"error": "Missing upstream credential. Authorize through OAuth first."}

    headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
    m = (method or "GET").upper()

    client = await _get_client()
    try:
        if m in ("GET", "DELETE"):
            response = await client.request(m, url, headers=headers, timeout=timeout)
        elif m in ("POST", "PUT"):
            response = await client.request(m, url, json=json_body, headers=headers, timeout=timeout)
        else:
            return {"error": f"Unsupported HTTP method: {m}"}

        response.raise_for_status()

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            text = response.text
            if text and len(text) > MAX_ERROR_TEXT:
                text = text[:MAX_ERROR_TEXT] + "…"
            return {
                "error": "Response is not valid JSON.",
                "status_code": response.status_code,
                "content_type": response.headers.get("content-type", ""),
                "text": text,
            }

    except httpx.HTTPStatusError as e:
        text = e.response.text
        if text and len(text) > MAX_ERROR_TEXT:
            text = text[:MAX_ERROR_TEXT] + "…"
        return {
            "error": f"Tag Manager API returned {e.response.status_code}",
            "status_code": e.response.status_code,
            "text": text,
        }
    except httpx.HTTPError as e:
        return {"error": f"Tag Manager API request failed: {type(e).__name__}"}
