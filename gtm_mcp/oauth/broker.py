# gtm_mcp/oauth/broker.py

import logging
import time
from typing import Any, Callable, Optional

from gtm_mcp.config import (
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    OAUTH_STORAGE_ENCRYPTION_KEY,
    STATE_SECRET,
)

from .clients import ClientRegistry
from .codes import CodeIssuer
from .correlation import CorrelationManager
from .grants import GrantRegistry
from .records import RecordCodec
from .store import TimeBoundedStore, build_kv
from .tokens import TokenIssuer
from .upstream import UpstreamExchanger

logger = logging.getLogger("gtm-mcp.broker")


class Broker:
    """
    All broker components, sharing one store.

    The store is the only mutable state; every component holds it by
    reference and nothing else.
    """

    def __init__(
        self,
        store: TimeBoundedStore,
        state_secret: str,
        upstream: UpstreamExchanger,
        codec: Optional[RecordCodec] = None,
    ):
        self.store = store
        self.codec = codec or RecordCodec()
        self.clients = ClientRegistry(store, self.codec)
        self.correlation = CorrelationManager(store, self.codec, secret=state_secret)
        self.codes = CodeIssuer(store, self.codec)
        self.tokens = TokenIssuer(store, self.codec)
        self.grants = GrantRegistry(store, self.codec)
        self.upstream = upstream


def create_broker(
    kv: Any = None,
    clock: Callable[[], float] = time.time,
    state_secret: Optional[str] = STATE_SECRET,
    encryption_key: Optional[str] = OAUTH_STORAGE_ENCRYPTION_KEY,
    upstream: Optional[UpstreamExchanger] = None,
) -> Broker:
    """Broker configured from the environment unless told otherwise."""
    if not state_secret:
        raise RuntimeError("STATE_SECRET (or JWT_SECRET) must be set for OAuth mode.")
    if upstream is None:
        if not GOOGLE_CLIENT_ID or not GOOGLE_CLIENT_SECRET:
            raise RuntimeError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set for OAuth mode.")
        upstream = UpstreamExchanger()

    store = TimeBoundedStore(kv if kv is not None else build_kv(), clock=clock)
    codec = RecordCodec(encryption_key)
    logger.info("OAuth broker initialized (encrypted records: %s)", codec.encrypted)
    return Broker(store, state_secret=state_secret, upstream=upstream, codec=codec)
