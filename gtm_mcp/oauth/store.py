# gtm_mcp/oauth/store.py
"""
Time-bounded key-value store for all OAuth broker state.

Backed by `key_value.aio` (the AsyncKeyValue protocol FastMCP uses for its own
storage), so the backend can be swapped without touching the broker:

  - default:                   in-process MemoryStore
  - OAUTH_TOKEN_STORAGE_DIR:   DiskStore (survives restarts, single host)
  - OAUTH_STORAGE_URL=redis:// RedisStore (shared by several instances)

Logical keys look like "client:abc" or "user-grant:alice:g1". The first ":"
segment selects the backend collection; the rest is the key inside it.

Values are opaque strings. Each one is stored in an envelope together with its
absolute expiry, which is checked against the store clock on every read.

Not every backend can enumerate keys (DiskStore cannot, RedisStore returns a
single SCAN page), so prefix listing is served from index documents kept by
this class for the collections named in `indexed`. There is one index document
per first name segment (the subject), so "user-token:alice:c:d1" is indexed
under "user-token:alice" and unrelated users never share a document.
"""

import asyncio
import logging
import time
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from key_value.aio.protocols.key_value import AsyncKeyValue
from key_value.aio.stores.memory import MemoryStore

from gtm_mcp.config import OAUTH_STORAGE_URL, OAUTH_TOKEN_STORAGE_DIR

logger = logging.getLogger("gtm-mcp.store")

DEFAULT_COLLECTION = "default"
INDEX_COLLECTION = "store-index"
DEFAULT_INDEXED_COLLECTIONS = ("user-grant", "user-token")


class StoreError(RuntimeError):
    """Raised when the store is asked for something it was not set up to do."""


def _split_key(key: str) -> Tuple[str, str]:
    if not key:
        raise ValueError("key must be a non-empty string")
    collection, sep, rest = key.partition(":")
    if not sep or not collection or not rest:
        return DEFAULT_COLLECTION, key
    return collection, rest


def _index_key(collection: str, name: str) -> str:
    return f"{collection}:{name.partition(':')[0]}"


class TimeBoundedStore:
    """
    get/set/take/delete/list_by_prefix over an AsyncKeyValue backend.

    `take` is the only primitive used for single-use values. It reads the entry
    and then deletes it; the caller whose delete actually removed the entry wins,
    every other concurrent caller sees absence. Keys of single-use values are
    random and never rewritten, so the delete result is a compare-and-delete.

    Updates to one index document are serialized by an in-process lock. Instances
    sharing one backend can lose index entries under concurrent writes for the
    same subject; listings are then incomplete, never wrong.
    """

    def __init__(
        self,
        kv: AsyncKeyValue,
        clock: Callable[[], float] = time.time,
        indexed: Iterable[str] = DEFAULT_INDEXED_COLLECTIONS,
    ):
        self._kv = kv
        self._clock = clock
        self._indexed = frozenset(indexed)
        self._index_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def now(self) -> float:
        return self._clock()

    def _unwrap(self, entry: Any) -> Tuple[Optional[str], bool]:
        """Returns (value, expired)."""
        if not isinstance(entry, dict) or not isinstance(entry.get("value"), str):
            logger.warning("Discarding store entry with unexpected shape")
            return None, True
        expires_at = entry.get("expires_at")
        if expires_at is not None and self.now() > float(expires_at):
            return None, True
        return entry["value"], False

    # -----------------------------
    # Index
    # -----------------------------

    async def _read_index(self, index_key: str) -> Dict[str, Optional[float]]:
        doc = await self._kv.get(key=index_key, collection=INDEX_COLLECTION)
        names = doc.get("names") if isinstance(doc, dict) else None
        return dict(names) if isinstance(names, dict) else {}

    async def _update_index(self, collection: str, name: str, expires_at: Optional[float] = None, remove: bool = False) -> None:
        if collection not in self._indexed:
            return
        index_key = _index_key(collection, name)
        async with self._index_locks[index_key]:
            names = await self._read_index(index_key)
            now = self.now()
            names = {n: exp for n, exp in names.items() if exp is None or float(exp) >= now}
            if remove:
                names.pop(name, None)
            else:
                names[name] = expires_at
            if names:
                await self._kv.put(key=index_key, value={"names": names}, collection=INDEX_COLLECTION)
            else:
                await self._kv.delete(key=index_key, collection=INDEX_COLLECTION)

    # -----------------------------
    # Primitives
    # -----------------------------

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        collection, name = _split_key(key)
        envelope: dict = {"value": value, "expires_at": None}
        backend_ttl = None
        if ttl is not None:
            if ttl <= 0:
                raise ValueError("ttl must be positive")
            envelope["expires_at"] = self.now() + ttl
            backend_ttl = max(1, int(ttl))
        await self._kv.put(key=name, value=envelope, collection=collection, ttl=backend_ttl)
        await self._update_index(collection, name, expires_at=envelope["expires_at"])

    async def get(self, key: str) -> Optional[str]:
        collection, name = _split_key(key)
        entry = await self._kv.get(key=name, collection=collection)
        if entry is None:
            return None
        value, expired = self._unwrap(entry)
        if expired:
            await self.delete(key)
            return None
        return value

    async def take(self, key: str) -> Optional[str]:
        collection, name = _split_key(key)
        entry = await self._kv.get(key=name, collection=collection)
        if entry is None:
            return None
        removed = await self._kv.delete(key=name, collection=collection)
        if not removed:
            # Another caller consumed it between our read and our delete.
            return None
        await self._update_index(collection, name, remove=True)
        value, expired = self._unwrap(entry)
        if expired:
            return None
        return value

    async def delete(self, key: str) -> bool:
        collection, name = _split_key(key)
        removed = bool(await self._kv.delete(key=name, collection=collection))
        await self._update_index(collection, name, remove=True)
        return removed

    async def list_by_prefix(self, prefix: str) -> List[str]:
        """
        Keys (in logical form) that start with `prefix` and have not expired.

        The prefix must name an indexed collection and a whole first segment
        ("user-grant:alice:").
        """
        collection, sep, name_prefix = prefix.partition(":")
        if not sep or not collection:
            collection, name_prefix = DEFAULT_COLLECTION, prefix
        if collection not in self._indexed:
            raise StoreError(f"collection {collection!r} is not indexed for prefix listing")
        shard, shard_sep, _ = name_prefix.partition(":")
        if not shard_sep or not shard:
            raise StoreError(f"prefix {prefix!r} must end its first segment with ':'")

        found: List[str] = []
        for name in sorted(await self._read_index(_index_key(collection, name_prefix))):
            if not name.startswith(name_prefix):
                continue
            key = f"{collection}:{name}"
            if await self.get(key) is not None:
                found.append(key)
        return found


def build_kv() -> AsyncKeyValue:
    """Backend selected from the environment (see module docstring)."""
    if OAUTH_STORAGE_URL:
        from key_value.aio.stores.redis import RedisStore  # optional extra

        logger.info("OAuth store backend: redis")
        return RedisStore(url=OAUTH_STORAGE_URL)

    if OAUTH_TOKEN_STORAGE_DIR:
        from key_value.aio.stores.disk import DiskStore

        logger.info("OAuth store backend: disk (%s)", OAUTH_TOKEN_STORAGE_DIR)
        return DiskStore(directory=OAUTH_TOKEN_STORAGE_DIR)

    logger.info("OAuth store backend: memory")
    return MemoryStore()
