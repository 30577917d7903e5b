"""
Actor resolution.

Derives the accountable identity of an inbound request. Absence of a
valid identity degrades to an anonymous actor keyed by network origin.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Protocol

from summary_guard.storage.repository import IdentityRepository

logger = logging.getLogger(__name__)

UNKNOWN_ORIGIN = "unknown"


class ActorKind(Enum):
    """The two kinds of accountable actors."""
    IDENTIFIED = "identified"
    ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class Actor:
    """Identity used for usage accounting.

    ``identity`` is the user id for identified actors and the network
    origin for anonymous ones.
    """
    kind: ActorKind
    identity: str

    @classmethod
    def identified(cls, user_id: str) -> "Actor":
        return cls(ActorKind.IDENTIFIED, user_id)

    @classmethod
    def anonymous(cls, origin: str) -> "Actor":
        return cls(ActorKind.ANONYMOUS, origin or UNKNOWN_ORIGIN)

    @property
    def is_anonymous(self) -> bool:
        return self.kind is ActorKind.ANONYMOUS

    @property
    def key(self) -> str:
        """Ledger key; a pure function of the identity so repeat requests share a row."""
        prefix = "ip" if self.is_anonymous else "user"
        return f"{prefix}:{self.identity}"


@dataclass(frozen=True)
class InboundRequest:
    """The parts of a request the resolver looks at."""
    headers: Mapping[str, str] = field(default_factory=dict)
    remote_addr: Optional[str] = None

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class IdentityProvider(Protocol):
    """Resolves an opaque token to a user id, or None if it does not verify."""

    def verify(self, token: str) -> Optional[str]:
        ...


def bearer_token(request: InboundRequest) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    auth = request.header("Authorization")
    if not auth:
        return None
    scheme, _, token = auth.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def client_origin(request: InboundRequest) -> str:
    """First X-Forwarded-For entry, else the transport address, else 'unknown'."""
    forwarded = request.header("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.remote_addr:
        return request.remote_addr
    return UNKNOWN_ORIGIN


class ActorResolver:
    """Turns a request into an Actor. Never raises."""

    def __init__(self, identity_provider: IdentityProvider):
        self.identity_provider = identity_provider

    def resolve_token(self, token: Optional[str]) -> Optional[str]:
        """Verify a token, treating any provider failure as no identity."""
        if not token:
            return None
        try:
            return self.identity_provider.verify(token)
        except Exception:
            logger.warning("Identity verification failed; treating request as anonymous", exc_info=True)
            return None

    def resolve(self, request: InboundRequest, token: Optional[str] = None) -> Actor:
        """An explicit token takes precedence over the Authorization header."""
        user_id = self.resolve_token(token or bearer_token(request))
        if user_id:
            return Actor.identified(user_id)
        return Actor.anonymous(client_origin(request))


class StoredIdentityProvider:
    """Identity provider backed by the identities table."""

    def __init__(self, repository: IdentityRepository):
        self.repository = repository

    def verify(self, token: str) -> Optional[str]:
        return self.repository.lookup(token)
