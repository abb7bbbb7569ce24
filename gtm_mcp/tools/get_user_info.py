#get_user_info.py

import json

from fastmcp import FastMCP
from mcp.types import ToolAnnotations

from gtm_mcp.api_client import current_identity


def register(mcp: FastMCP):
    @mcp.tool(annotations=ToolAnnotations(readOnlyHint=True))
    async def get_user_info() -> str:
        """
        Returns the Google user this session is authorized as.

        Response fields: subject, name, email.
        """
        identity = current_identity()
        if identity is None:
            return json.dumps({"error": "No authorized user for this request."}, indent=2)
        return json.dumps(identity.model_dump(), indent=2)
