# gtm_mcp/oauth/grants.py

import logging
import secrets
from typing import List, Optional

from .records import Grant, RecordCodec
from .store import TimeBoundedStore

logger = logging.getLogger("gtm-mcp.grants")


def _grant_key(grant_id: str) -> str:
    return f"grant:{grant_id}"


def _user_grant_prefix(subject: str) -> str:
    return f"user-grant:{subject}:"


class GrantRegistry:
    """
    Which (user, client) pairs have been granted access.

    Grants are independent of tokens: revoking one leaves the other in place.
    Callers that want a full revocation compose both (see the /remove endpoint).
    """

    def __init__(self, store: TimeBoundedStore, codec: RecordCodec):
        self._store = store
        self._codec = codec

    async def record_grant(self, subject: str, client_id: str, scopes: List[str]) -> str:
        for existing in await self.list_grants(subject):
            if existing.client_id == client_id:
                return existing.grant_id

        grant = Grant(
            grant_id=secrets.token_urlsafe(16),
            subject=subject,
            client_id=client_id,
            scopes=list(scopes),
            created_at=self._store.now(),
        )
        payload = self._codec.dumps(grant)
        await self._store.set(_grant_key(grant.grant_id), payload)
        await self._store.set(_user_grant_prefix(subject) + grant.grant_id, payload)
        logger.info("Recorded grant %s for user=%s client=%s", grant.grant_id, subject, client_id)
        return grant.grant_id

    async def get_grant(self, grant_id: str) -> Optional[Grant]:
        return self._codec.loads(await self._store.get(_grant_key(grant_id)), Grant)

    async def list_grants(self, subject: str) -> List[Grant]:
        """Snapshot of the subject's grants at call time, in no particular order."""
        grants: List[Grant] = []
        for key in await self._store.list_by_prefix(_user_grant_prefix(subject)):
            grant = self._codec.loads(await self._store.get(key), Grant)
            if grant is not None:
                grants.append(grant)
        return grants

    async def revoke(self, grant_id: str, subject: str) -> bool:
        removed = await self._store.delete(_grant_key(grant_id))
        removed_index = await self._store.delete(_user_grant_prefix(subject) + grant_id)
        if removed or removed_index:
            logger.info("Revoked grant %s for user=%s", grant_id, subject)
        return removed or removed_index
