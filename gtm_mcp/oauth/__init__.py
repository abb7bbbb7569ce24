# OAuth 2.0 broker for the Google Tag Manager MCP server
#
# The ASGI app lives in .mount_apps (it pulls in the tools, which import this package).

from .broker import (
    Broker,
    create_broker,
)

from .resource_server import (
    BearerAuthMiddleware,
)

__all__ = [
    "Broker",
    "create_broker",
    "BearerAuthMiddleware",
]
