# gtm_mcp/oauth/mount_apps.py
"""
ASGI application for the Google Tag Manager MCP server with OAuth support.

One Starlette app serves:
1. OAuth endpoints and .well-known discovery at the root
2. The MCP endpoint at MCP_PATH, guarded by BearerAuthMiddleware

CORSMiddleware wraps both, so browser clients get preflight answers without a
bearer token.

The .well-known endpoints must be discoverable at the root level (RFC 8414,
RFC 9728).
"""

import logging
from typing import Callable, Optional

from fastmcp import FastMCP
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route

from gtm_mcp.config import CORS_ALLOW_ORIGINS, HOST, MCP_PATH, PORT
from gtm_mcp.tools import register_all

from .auth_server import EXCEPTION_HANDLERS, create_auth_routes
from .broker import Broker, create_broker
from .resource_server import BearerAuthMiddleware

logger = logging.getLogger("gtm-mcp.mount_apps")

CORS_HEADERS = ["Authorization", "Content-Type", "Mcp-Session-Id", "Mcp-Protocol-Version", "Last-Event-ID"]


def create_mcp_server() -> FastMCP:
    mcp = FastMCP("gtm-mcp")
    register_all(mcp)
    return mcp


def create_app(broker: Optional[Broker] = None, downstream: Optional[Callable] = None) -> Starlette:
    """
    Create the ASGI application.

    Args:
        broker: OAuth broker; configured from the environment when omitted.
        downstream: ASGI app to protect at MCP_PATH; FastMCP's streamable-HTTP
            app when omitted.
    """
    if broker is None:
        broker = create_broker()

    lifespan = None
    if downstream is None:
        mcp_app = create_mcp_server().http_app(path=MCP_PATH)
        lifespan = mcp_app.lifespan
        downstream = mcp_app

    routes = create_auth_routes()
    routes.append(
        Route(
            MCP_PATH,
            endpoint=BearerAuthMiddleware(downstream),
            methods=["GET", "POST", "DELETE"],
            name="mcp",
        )
    )

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=CORS_ALLOW_ORIGINS,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=CORS_HEADERS,
            expose_headers=["WWW-Authenticate", "Mcp-Session-Id"],
        )
    ]
    app = Starlette(
        routes=routes,
        middleware=middleware,
        exception_handlers=EXCEPTION_HANDLERS,
        lifespan=lifespan,
    )
    app.state.broker = broker

    logger.info("App created: OAuth endpoints at /, MCP at %s", MCP_PATH)
    return app


def run_server(host: str = HOST, port: int = PORT):
    import uvicorn

    app = create_app()

    logger.info("Starting GTM MCP OAuth Server on http://%s:%s", host, port)
    logger.info("  - MCP: http://%s:%s%s", host, port, MCP_PATH)
    logger.info("  - Metadata: http://%s:%s/.well-known/oauth-authorization-server", host, port)

    uvicorn.run(app, host=host, port=port, log_level="info")
