# gtm_mcp/config.py

import os

GTM_API_BASE = "https://tagmanager.googleapis.com/tagmanager/v2"

# Upstream identity provider (Google)
GOOGLE_CLIENT_ID = (os.getenv("GOOGLE_CLIENT_ID") or "").strip()
GOOGLE_CLIENT_SECRET = (os.getenv("GOOGLE_CLIENT_SECRET") or "").strip()
GOOGLE_AUTHORIZE_URL = os.getenv("GOOGLE_AUTHORIZE_URL", "https://accounts.google.com/o/oauth2/v2/auth")
GOOGLE_TOKEN_URL = os.getenv("GOOGLE_TOKEN_URL", "https://oauth2.googleapis.com/token")
GOOGLE_USERINFO_URL = os.getenv("GOOGLE_USERINFO_URL", "https://www.googleapis.com/oauth2/v2/userinfo")
GOOGLE_REVOKE_URL = os.getenv("GOOGLE_REVOKE_URL", "https://oauth2.googleapis.com/revoke")
HOSTED_DOMAIN = (os.getenv("HOSTED_DOMAIN") or "").strip() or None

DEFAULT_GOOGLE_SCOPES = " ".join(
    [
        "https://www.googleapis.com/auth/userinfo.email",
        "https://www.googleapis.com/auth/userinfo.profile",
        "https://www.googleapis.com/auth/tagmanager.delete.containers",
        "https://www.googleapis.com/auth/tagmanager.edit.containers",
        "https://www.googleapis.com/auth/tagmanager.edit.containerversions",
        "https://www.googleapis.com/auth/tagmanager.manage.accounts",
        "https://www.googleapis.com/auth/tagmanager.manage.users",
        "https://www.googleapis.com/auth/tagmanager.publish",
        "https://www.googleapis.com/auth/tagmanager.readonly",
    ]
)
GOOGLE_SCOPES = (os.getenv("GOOGLE_SCOPES") or DEFAULT_GOOGLE_SCOPES).split()

UPSTREAM_TIMEOUT = float(os.getenv("UPSTREAM_TIMEOUT", "10.0"))  # seconds

# Signing key for the opaque state round-tripped through Google
STATE_SECRET = (os.getenv("STATE_SECRET") or os.getenv("JWT_SECRET") or "").strip() or None

# Storage
OAUTH_TOKEN_STORAGE_DIR = (os.getenv("OAUTH_TOKEN_STORAGE_DIR") or "").strip() or None
OAUTH_STORAGE_URL = (os.getenv("OAUTH_STORAGE_URL") or "").strip() or None
OAUTH_STORAGE_ENCRYPTION_KEY = (os.getenv("OAUTH_STORAGE_ENCRYPTION_KEY") or "").strip() or None

# Lifetimes (seconds)
ACCESS_TOKEN_TTL = 3600
AUTH_CODE_TTL = 300
STATE_TTL = 600

DEFAULT_SCOPE = os.getenv("DEFAULT_SCOPE", "gtm")

# Server
MCP_PATH = os.getenv("MCP_PATH", "/mcp").strip() or "/mcp"
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))

# Comma-separated origins allowed by CORS; "*" allows any origin.
CORS_ALLOW_ORIGINS = [o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()]
