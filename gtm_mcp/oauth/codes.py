# gtm_mcp/oauth/codes.py

import logging
import secrets
from typing import List, Optional

from gtm_mcp.config import AUTH_CODE_TTL

from .records import AuthorizationCode, Identity, RecordCodec
from .store import TimeBoundedStore

logger = logging.getLogger("gtm-mcp.codes")


def _code_key(code: str) -> str:
    return f"code:{code}"


class CodeIssuer:
    """Single-use authorization codes handed to the downstream client."""

    def __init__(self, store: TimeBoundedStore, codec: RecordCodec, ttl: int = AUTH_CODE_TTL):
        self._store = store
        self._codec = codec
        self.ttl = ttl

    async def issue(
        self,
        identity: Identity,
        client_id: str,
        scopes: List[str],
        upstream_token: str,
        redirect_uri: str,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None,
    ) -> str:
        code = secrets.token_urlsafe(32)
        record = AuthorizationCode(
            identity=identity,
            client_id=client_id,
            redirect_uri=redirect_uri,
            scopes=list(scopes),
            upstream_token=upstream_token,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            expires_at=self._store.now() + self.ttl,
        )
        await self._store.set(_code_key(code), self._codec.dumps(record), ttl=self.ttl)
        logger.info("Issued auth code for client=%s user=%s", client_id, identity.subject)
        return code

    async def redeem(self, code: str, client_id: str) -> Optional[AuthorizationCode]:
        """
        Consume a code on behalf of `client_id`.

        The code is burned even when presented by the wrong client.
        """
        if not code:
            return None
        record = self._codec.loads(await self._store.take(_code_key(code)), AuthorizationCode)
        if record is None:
            return None
        if record.client_id != client_id:
            logger.warning("Auth code for client=%s presented by client=%s", record.client_id, client_id)
            return None
        return record
