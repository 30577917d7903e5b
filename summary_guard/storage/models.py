"""
Data models for storage layer.

Defines the persisted rows of the ledger, the cache and the read-only
document store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class UsageCounter:
    """Per-actor, per-operation usage for one calendar day.

    At most one row exists per (actor_key, operation, period_key).
    Rows are never deleted; only the current period is consulted.
    """
    actor_key: str
    operation: str
    period_key: str
    count: int
    last_updated: Optional[datetime] = None


@dataclass(frozen=True)
class CachedArtifact:
    """Last computed summary for a resource."""
    resource_id: str
    body: Dict[str, Any]
    computed_at: datetime


@dataclass(frozen=True)
class Profile:
    """Stored plan profile for an identified user.

    A limit of None means "use the plan's configured ceiling".
    """
    user_id: str
    plan: str
    limits: Dict[str, Optional[int]] = field(default_factory=dict)


@dataclass(frozen=True)
class Document:
    """A single input document (e.g. a review) belonging to a resource."""
    id: str
    resource_id: str
    text: str
    rating: Optional[float] = None
    lang: Optional[str] = None
    created_at: Optional[datetime] = None
