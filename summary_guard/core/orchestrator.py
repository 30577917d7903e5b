"""
Summary orchestration.

Answers "give me the artifact for resource R, as actor A":

1. Fresh cache hit - served without consuming quota
2. Quota check - a generator worker is reserved first, so a busy generator
   costs no quota; anonymous actors over the ceiling are asked to sign in
3. Fetch documents - none means fall back to any cached artifact, however old
4. Generate - bounded by a timeout; failure leaves the cache untouched and quota spent
5. Store - upsert the cache and return the fresh artifact
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from .actors import Actor
from .cache import ArtifactCache
from .errors import InvalidInput, NoInputData, QuotaExceeded, SignInRequired
from .generator import BoundedGenerator, GenerationSlot
from .ledger import QuotaLedger
from .plans import PlanResolver
from summary_guard.storage.models import CachedArtifact, Document

logger = logging.getLogger(__name__)

GENERATE_OPERATION = "analyze"


class DocumentStore(Protocol):
    """Read-only supplier of generator inputs."""

    def fetch_documents(self, resource_id: str, limit: int = 200) -> List[Document]:
        ...


@dataclass(frozen=True)
class ComputationRequest:
    """A caller's ask for one resource's artifact. Never stored."""
    resource_id: str
    actor: Actor
    force_refresh: bool = False


@dataclass(frozen=True)
class ArtifactResult:
    """An artifact as served to a caller."""
    body: Dict[str, Any]
    served_from_cache: bool
    computed_at: datetime

    @classmethod
    def from_cached(cls, artifact: CachedArtifact, served_from_cache: bool) -> "ArtifactResult":
        return cls(artifact.body, served_from_cache, artifact.computed_at)


def validate_resource_id(resource_id: Any) -> str:
    if not isinstance(resource_id, str) or not resource_id.strip():
        raise InvalidInput("resource_id is required")
    return resource_id.strip()


class SummaryOrchestrator:
    """Composes plans, ledger, cache, document store and generator."""

    def __init__(
        self,
        plans: PlanResolver,
        ledger: QuotaLedger,
        cache: ArtifactCache,
        documents: DocumentStore,
        generator: BoundedGenerator,
        max_documents: int = 200,
    ):
        self.plans = plans
        self.ledger = ledger
        self.cache = cache
        self.documents = documents
        self.generator = generator
        self.max_documents = max_documents

    def get_artifact(self, resource_id: str, actor: Actor, force_refresh: bool = False) -> ArtifactResult:
        """Serve the artifact for a resource, computing it if needed.

        Raises:
            InvalidInput: If resource_id is missing
            SignInRequired: If an anonymous actor is over its ceiling
            QuotaExceeded: If an identified actor is over its plan ceiling
            NoInputData: If there are no documents and nothing cached
            GeneratorBusy: If no generator worker is free; no quota is consumed
            GenerationFailed: If the generator errors or times out
            StoreUnavailable: If the ledger or cache cannot be reached
        """
        resource_id = validate_resource_id(resource_id)

        if not force_refresh:
            cached = self.cache.get_fresh(resource_id)
            if cached is not None:
                logger.debug("Serving cached artifact for %s", resource_id)
                return ArtifactResult.from_cached(cached, served_from_cache=True)

        policy = self.plans.policy_for(actor)
        with self.generator.reserve(resource_id) as slot:
            decision = self.ledger.consume(actor, policy, GENERATE_OPERATION)
            if not decision.allowed:
                if actor.is_anonymous:
                    raise SignInRequired("Sign in to keep generating summaries")
                raise QuotaExceeded(
                    f"Daily '{GENERATE_OPERATION}' limit of {decision.limit} reached on plan '{policy.plan}'",
                    plan=policy.plan,
                    remaining=0,
                )
            stored = self.recompute(resource_id, slot)

        if stored is None:
            fallback = self.cache.get(resource_id)
            if fallback is not None:
                return ArtifactResult.from_cached(fallback, served_from_cache=True)
            raise NoInputData(f"No documents to summarize for '{resource_id}'")
        return ArtifactResult.from_cached(stored, served_from_cache=False)

    def handle(self, request: ComputationRequest) -> ArtifactResult:
        return self.get_artifact(request.resource_id, request.actor, request.force_refresh)

    def recompute(self, resource_id: str, slot: Optional[GenerationSlot] = None) -> Optional[CachedArtifact]:
        """Fetch documents, generate and store, without touching the ledger.

        Returns None when the resource has no documents.
        """
        documents = self.documents.fetch_documents(resource_id, self.max_documents)
        if not documents:
            return None
        body = self.generator.generate(resource_id, documents, slot)
        return self.cache.upsert(resource_id, body)
