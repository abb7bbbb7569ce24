#list_accounts.py

import json

from fastmcp import FastMCP
from mcp.types import ToolAnnotations

from gtm_mcp.api_client import make_request
from gtm_mcp.config import GTM_API_BASE


def register(mcp: FastMCP):
    @mcp.tool(annotations=ToolAnnotations(readOnlyHint=True))
    async def list_accounts() -> str:
        """
        Google Tag Manager: List Accounts
        GET /tagmanager/v2/accounts

        Lists all GTM accounts the authorized user has access to.

        Notes:
            - Response fields per account: accountId, name, path, fingerprint.
        """
        data = await make_request(f"{GTM_API_BASE}/accounts")

        if isinstance(data, dict) and data.get("error"):
            return json.dumps({"error": data["error"]}, indent=2)
        return json.dumps(data.get("account", []), indent=2)
