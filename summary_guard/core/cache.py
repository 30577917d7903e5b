"""
Artifact cache.

Freshness is a pure function of a timestamp and a TTL, kept apart from
storage so each call path can apply its own TTL (or none, when forced).
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .clock import Clock, utc_now
from summary_guard.storage.models import CachedArtifact
from summary_guard.storage.repository import ArtifactRepository


def is_fresh(artifact: CachedArtifact, ttl: timedelta, now: datetime) -> bool:
    """True while the artifact is younger than ttl."""
    return (now - artifact.computed_at) < ttl


class ArtifactCache:
    """Last computed artifact per resource, with a freshness timestamp."""

    def __init__(self, repository: ArtifactRepository, ttl: timedelta, clock: Clock = utc_now):
        self.repository = repository
        self.ttl = ttl
        self.clock = clock

    def get(self, resource_id: str) -> Optional[CachedArtifact]:
        return self.repository.get(resource_id)

    def is_fresh(self, artifact: CachedArtifact, ttl: Optional[timedelta] = None) -> bool:
        return is_fresh(artifact, self.ttl if ttl is None else ttl, self.clock())

    def get_fresh(self, resource_id: str) -> Optional[CachedArtifact]:
        artifact = self.get(resource_id)
        if artifact is not None and self.is_fresh(artifact):
            return artifact
        return None

    def upsert(self, resource_id: str, body: Dict[str, Any]) -> CachedArtifact:
        """Replace the row for resource_id, stamped with the current time.

        Returns what the store holds afterwards: the new artifact, or the
        newer one a concurrent writer stored first.
        """
        computed_at = self.clock()
        if self.repository.upsert(resource_id, body, computed_at):
            return CachedArtifact(resource_id=resource_id, body=body, computed_at=computed_at)
        stored = self.repository.get(resource_id)
        if stored is None:
            return CachedArtifact(resource_id=resource_id, body=body, computed_at=computed_at)
        return stored

    def stale_resource_ids(self, limit: int = 2000) -> List[str]:
        """Resources whose artifact age is >= ttl, oldest first."""
        return self.repository.list_stale(self.clock() - self.ttl, limit)

    def missing_resource_ids(self, limit: int = 1000) -> List[str]:
        return self.repository.list_missing(limit)
