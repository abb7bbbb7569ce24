#list_containers.py

import json
from urllib.parse import quote

from fastmcp import FastMCP
from mcp.types import ToolAnnotations

from gtm_mcp.api_client import make_request
from gtm_mcp.config import GTM_API_BASE


def _err(msg: str) -> str:
    return json.dumps({"error": msg}, indent=2)


def register(mcp: FastMCP):
    @mcp.tool(annotations=ToolAnnotations(readOnlyHint=True))
    async def list_containers(account_id: str) -> str:
        """
        Google Tag Manager: List Containers
        GET /tagmanager/v2/accounts/{accountId}/containers

        Args:
            account_id (str): GTM account id (see list_accounts).

        Notes:
            - Response fields per container: containerId, name, publicId, usageContext, path.
        """
        if not account_id or not isinstance(account_id, str) or not account_id.strip():
            return _err("Parameter 'account_id' is required.")

        url = f"{GTM_API_BASE}/accounts/{quote(account_id.strip(), safe='')}/containers"
        data = await make_request(url)

        if isinstance(data, dict) and data.get("error"):
            return json.dumps({"error": data["error"]}, indent=2)
        return json.dumps(data.get("container", []), indent=2)
