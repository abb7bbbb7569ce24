# gtm_mcp/oauth/tokens.py
"""
Opaque bearer tokens issued to downstream clients.

A token is random and carries nothing; everything about it lives in the store
under the SHA-256 digest of the token value:

  token:{digest}                              -> AccessToken record
  user-token:{subject}:{client_id}:{digest}   -> "" (index for revocation)

The upstream credential is kept in the record for tool dispatch and never
leaves this module in a response.
"""

import hashlib
import logging
import secrets
from typing import List, Optional, Tuple

from gtm_mcp.config import ACCESS_TOKEN_TTL

from .records import AccessToken, Identity, RecordCodec
from .store import TimeBoundedStore

logger = logging.getLogger("gtm-mcp.tokens")


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _token_key(digest: str) -> str:
    return f"token:{digest}"


def _user_token_prefix(subject: str, client_id: str) -> str:
    return f"user-token:{subject}:{client_id}:"


class TokenIssuer:
    def __init__(self, store: TimeBoundedStore, codec: RecordCodec, ttl: int = ACCESS_TOKEN_TTL):
        self._store = store
        self._codec = codec
        self.ttl = ttl

    async def mint(
        self,
        identity: Identity,
        client_id: str,
        scopes: List[str],
        upstream_token: str,
    ) -> Tuple[str, int]:
        token = secrets.token_urlsafe(32)
        digest = _digest(token)
        now = self._store.now()

        record = AccessToken(
            identity=identity,
            client_id=client_id,
            scopes=list(scopes),
            upstream_token=upstream_token,
            issued_at=now,
            expires_at=now + self.ttl,
        )
        await self._store.set(_token_key(digest), self._codec.dumps(record), ttl=self.ttl)
        await self._store.set(_user_token_prefix(identity.subject, client_id) + digest, "", ttl=self.ttl)

        logger.info("Issued access token for user=%s client=%s", identity.subject, client_id)
        return token, self.ttl

    async def validate(self, token: str) -> Optional[AccessToken]:
        """
        The record behind a presented token, or None.

        Expired and never-issued tokens take the same path and give the same
        answer.
        """
        if not token:
            return None
        raw = await self._store.get(_token_key(_digest(token)))
        record = self._codec.loads(raw, AccessToken)
        if record is None or record.expires_at < self._store.now():
            return None
        return record

    async def list_for(self, subject: str, client_id: str) -> List[AccessToken]:
        """Live token records issued to `client_id` on behalf of `subject`."""
        prefix = _user_token_prefix(subject, client_id)
        records: List[AccessToken] = []
        for index_key in await self._store.list_by_prefix(prefix):
            raw = await self._store.get(_token_key(index_key[len(prefix):]))
            record = self._codec.loads(raw, AccessToken)
            if record is not None and record.expires_at >= self._store.now():
                records.append(record)
        return records

    async def revoke_for(self, subject: str, client_id: str) -> int:
        """Delete every live token issued to `client_id` on behalf of `subject`."""
        prefix = _user_token_prefix(subject, client_id)
        revoked = 0
        for index_key in await self._store.list_by_prefix(prefix):
            digest = index_key[len(prefix):]
            if await self._store.delete(_token_key(digest)):
                revoked += 1
            await self._store.delete(index_key)
        if revoked:
            logger.info("Revoked %d token(s) for user=%s client=%s", revoked, subject, client_id)
        return revoked
