# gtm_mcp/oauth/correlation.py
"""
In-flight authorization requests, kept server-side across the round trip to
Google.

Only an opaque correlation id leaves this service. It travels as the upstream
`state` parameter inside a short HS256 JWT, so a forged or altered state is
rejected before the store is consulted, and nothing in it is secret.
"""

import logging
import secrets
from typing import Optional

import jwt

from gtm_mcp.config import STATE_TTL

from .records import AuthorizationRequest, RecordCodec
from .store import TimeBoundedStore

logger = logging.getLogger("gtm-mcp.correlation")

STATE_JWT_ALGORITHM = "HS256"
STATE_AUDIENCE = "gtm-mcp-callback"


def _state_key(correlation_id: str) -> str:
    return f"state:{correlation_id}"


class CorrelationManager:
    def __init__(
        self,
        store: TimeBoundedStore,
        codec: RecordCodec,
        secret: str,
        ttl: int = STATE_TTL,
    ):
        if not secret:
            raise ValueError("a state signing secret is required")
        self._store = store
        self._codec = codec
        self._secret = secret
        self.ttl = ttl

    async def begin(self, auth_request: AuthorizationRequest) -> str:
        correlation_id = secrets.token_urlsafe(24)
        await self._store.set(_state_key(correlation_id), self._codec.dumps(auth_request), ttl=self.ttl)
        logger.info("Started authorization for client=%s", auth_request.client_id)
        return correlation_id

    async def complete(self, correlation_id: str) -> Optional[AuthorizationRequest]:
        """
        Consume the entry. None means it was already used or has expired; the
        caller must report an invalid state rather than retry.
        """
        if not correlation_id:
            return None
        raw = await self._store.take(_state_key(correlation_id))
        return self._codec.loads(raw, AuthorizationRequest)

    def sign(self, correlation_id: str) -> str:
        now = int(self._store.now())
        # Expiry is checked against the store clock in verify(), not by PyJWT.
        claims = {"cid": correlation_id, "aud": STATE_AUDIENCE, "exp": now + self.ttl}
        return jwt.encode(claims, self._secret, algorithm=STATE_JWT_ALGORITHM)

    def verify(self, state: str) -> Optional[str]:
        """Correlation id carried by a state value, or None if it is not ours."""
        if not state:
            return None
        try:
            payload = jwt.decode(
                state,
                self._secret,
                algorithms=[STATE_JWT_ALGORITHM],
                audience=STATE_AUDIENCE,
                options={"verify_exp": False},
            )
        except jwt.InvalidTokenError:
            logger.info("Rejected state with invalid signature or shape")
            return None

        exp = payload.get("exp")
        if not isinstance(exp, int) or exp < self._store.now():
            return None

        cid = payload.get("cid")
        if not isinstance(cid, str) or not cid:
            return None
        return cid
