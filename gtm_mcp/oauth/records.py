# gtm_mcp/oauth/records.py
"""
Typed records persisted by the OAuth broker, and the codec that turns them
into the opaque strings held by the TimeBoundedStore.

Envelope format (JSON): {"v": 1, "kind": "<record kind>", "data": {...}}

If OAUTH_STORAGE_ENCRYPTION_KEY is set (a Fernet key: 32 urlsafe-base64
bytes) the whole envelope is encrypted at rest. Anything that fails to decrypt,
parse or validate is logged and treated as absent.
"""

import json
import logging
import time
from typing import ClassVar, List, Optional, Type, TypeVar

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger("gtm-mcp.records")

RECORD_VERSION = 1


class Record(BaseModel):
    model_config = ConfigDict(extra="forbid")

    KIND: ClassVar[str] = "record"


class Identity(BaseModel):
    """The upstream user, as reported by Google's userinfo endpoint."""

    model_config = ConfigDict(extra="forbid")

    subject: str
    name: str = ""
    email: str = ""


class ClientRecord(Record):
    KIND: ClassVar[str] = "client"

    client_id: str
    client_secret_hash: str
    redirect_uris: List[str]
    client_name: str
    created_at: float = Field(default_factory=time.time)


class AuthorizationRequest(Record):
    KIND: ClassVar[str] = "authorization_request"

    client_id: str
    redirect_uri: str
    scopes: List[str] = Field(default_factory=list)
    state: Optional[str] = None
    response_type: str = "code"
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    created_at: float = Field(default_factory=time.time)


class AuthorizationCode(Record):
    KIND: ClassVar[str] = "authorization_code"

    identity: Identity
    client_id: str
    redirect_uri: str
    scopes: List[str] = Field(default_factory=list)
    upstream_token: str
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    expires_at: float


class AccessToken(Record):
    KIND: ClassVar[str] = "access_token"

    identity: Identity
    client_id: str
    scopes: List[str] = Field(default_factory=list)
    upstream_token: str
    issued_at: float
    expires_at: float


class Grant(Record):
    KIND: ClassVar[str] = "grant"

    grant_id: str
    subject: str
    client_id: str
    scopes: List[str] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)


R = TypeVar("R", bound=Record)


class RecordCodec:
    def __init__(self, encryption_key: Optional[str] = None):
        self._fernet = Fernet(encryption_key.encode("ascii")) if encryption_key else None

    @property
    def encrypted(self) -> bool:
        return self._fernet is not None

    def dumps(self, record: Record) -> str:
        payload = json.dumps(
            {"v": RECORD_VERSION, "kind": record.KIND, "data": record.model_dump(mode="json")},
            separators=(",", ":"),
        )
        if self._fernet is None:
            return payload
        return self._fernet.encrypt(payload.encode("utf-8")).decode("ascii")

    def loads(self, raw: Optional[str], model: Type[R]) -> Optional[R]:
        if raw is None:
            return None

        text = raw
        if self._fernet is not None:
            try:
                text = self._fernet.decrypt(raw.encode("ascii")).decode("utf-8")
            except (InvalidToken, UnicodeError):
                logger.error("Discarding %s record that could not be decrypted", model.KIND)
                return None

        try:
            envelope = json.loads(text)
        except ValueError:
            logger.error("Discarding %s record that is not valid JSON", model.KIND)
            return None

        if not isinstance(envelope, dict):
            logger.error("Discarding %s record with a non-object envelope", model.KIND)
            return None
        if envelope.get("v") != RECORD_VERSION:
            logger.error("Discarding %s record with unsupported version %r", model.KIND, envelope.get("v"))
            return None
        if envelope.get("kind") != model.KIND:
            logger.error("Discarding record of kind %r where %s was expected", envelope.get("kind"), model.KIND)
            return None

        try:
            return model.model_validate(envelope.get("data"))
        except ValidationError as e:
            logger.error("Discarding malformed %s record: %d validation error(s)", model.KIND, e.error_count())
            return None
