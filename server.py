import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from gtm_mcp.oauth.mount_apps import run_server  # noqa: E402  (config is read at import time)

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr)
    logger = logging.getLogger("gtm-mcp")
    logger.info("Starting GTM MCP HTTP Server...")
    run_server()
    logger.info("Server stopped")
