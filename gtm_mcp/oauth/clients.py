# gtm_mcp/oauth/clients.py

import hashlib
import hmac
import logging
import secrets
from typing import List, Optional, Tuple

from .records import ClientRecord, RecordCodec
from .store import TimeBoundedStore

logger = logging.getLogger("gtm-mcp.clients")

CLIENT_ID_PREFIX = "gtm_"


def _hash_secret(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _client_key(client_id: str) -> str:
    return f"client:{client_id}"


class ClientRegistry:
    """Dynamically registered clients and their redirect URI allow-lists."""

    def __init__(self, store: TimeBoundedStore, codec: RecordCodec):
        self._store = store
        self._codec = codec

    async def register(self, redirect_uris: List[str], name: str) -> Tuple[str, str]:
        """
        Persist a new client and return (client_id, client_secret).

        The secret is only kept as a digest; this is the one time the caller
        sees it in clear.
        """
        if not redirect_uris:
            raise ValueError("redirect_uris must be a non-empty list")

        client_id = f"{CLIENT_ID_PREFIX}{secrets.token_urlsafe(16)}"
        while await self._store.get(_client_key(client_id)) is not None:
            client_id = f"{CLIENT_ID_PREFIX}{secrets.token_urlsafe(16)}"
        client_secret = secrets.token_urlsafe(32)

        record = ClientRecord(
            client_id=client_id,
            client_secret_hash=_hash_secret(client_secret),
            redirect_uris=list(redirect_uris),
            client_name=name,
            created_at=self._store.now(),
        )
        await self._store.set(_client_key(client_id), self._codec.dumps(record))
        logger.info("Registered client %s (%s)", client_id, name)
        return client_id, client_secret

    async def lookup(self, client_id: str) -> Optional[ClientRecord]:
        if not client_id:
            return None
        raw = await self._store.get(_client_key(client_id))
        return self._codec.loads(raw, ClientRecord)

    async def remove(self, client_id: str) -> bool:
        """Delete the client. Issued tokens and grants are left alone."""
        removed = await self._store.delete(_client_key(client_id))
        if removed:
            logger.info("Removed client %s", client_id)
        return removed

    @staticmethod
    def verify_secret(client: ClientRecord, client_secret: str) -> bool:
        return hmac.compare_digest(_hash_secret(client_secret), client.client_secret_hash)
