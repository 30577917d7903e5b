"""
Inbound operations.

This is the only place where typed errors are turned into payloads.
"""

import hmac
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from summary_guard.config.loader import OPERATIONS, Settings
from summary_guard.core.actors import Actor, ActorResolver, InboundRequest, StoredIdentityProvider
from summary_guard.core.cache import ArtifactCache
from summary_guard.core.clock import Clock, utc_now
from summary_guard.core.errors import SignInRequired, SummaryGuardError, Unauthorized
from summary_guard.core.generator import ArtifactGenerator, BoundedGenerator
from summary_guard.core.ledger import QuotaLedger
from summary_guard.core.orchestrator import ComputationRequest, SummaryOrchestrator
from summary_guard.core.plans import PlanResolver
from summary_guard.core.sweep import RecomputationSweep
from summary_guard.storage.repository import (
    ArtifactRepository,
    DocumentRepository,
    IdentityRepository,
    ProfileRepository,
    UsageRepository,
)

logger = logging.getLogger(__name__)


def _error_payload(error: SummaryGuardError) -> Dict[str, Any]:
    payload = error.to_payload()
    payload["status_code"] = error.status_code
    return payload


def _internal_error(operation: str) -> Dict[str, Any]:
    logger.exception("Unclassified failure in %s", operation)
    return {"error": "internal_error", "message": "Internal error", "status_code": 500}


@dataclass
class SummaryService:
    """Wired components behind the inbound operations."""
    settings: Settings
    actors: ActorResolver
    plans: PlanResolver
    ledger: QuotaLedger
    cache: ArtifactCache
    orchestrator: SummaryOrchestrator
    sweep: RecomputationSweep

    def __enter__(self) -> "SummaryService":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    def close(self) -> None:
        """Stop the generator pool without waiting on calls that timed out."""
        self.orchestrator.generator.shutdown()

    def get_or_refresh_artifact(
        self,
        resource_id: str,
        force_refresh: bool = False,
        actor_token: Optional[str] = None,
        request: Optional[InboundRequest] = None,
    ) -> Dict[str, Any]:
        """Serve a resource's summary, from cache when fresh.

        Returns:
            ``{body, served_from_cache, computed_at}`` or ``{error, message, status_code, ...}``
        """
        try:
            actor = self.actors.resolve(request or InboundRequest(), actor_token)
            result = self.orchestrator.handle(ComputationRequest(resource_id, actor, force_refresh))
        except SummaryGuardError as e:
            return _error_payload(e)
        except Exception:
            return _internal_error("get_or_refresh_artifact")
        return {
            "body": result.body,
            "served_from_cache": result.served_from_cache,
            "computed_at": result.computed_at.isoformat(),
        }

    def get_usage(self, actor_token: Optional[str]) -> Dict[str, Any]:
        """Today's usage against the resolved policy. No side effects."""
        try:
            user_id = self.actors.resolve_token(actor_token)
            if not user_id:
                raise SignInRequired("Sign-in required")
            actor = Actor.identified(user_id)
            policy = self.plans.policy_for(actor)
            used = self.ledger.usage_today(actor.key, OPERATIONS)
        except SummaryGuardError as e:
            return _error_payload(e)
        except Exception:
            return _internal_error("get_usage")

        per_operation = {}
        for operation in OPERATIONS:
            limit = policy.ceiling_for(operation)
            per_operation[operation] = {
                "used": used[operation],
                "limit": limit,
                "remaining": max(0, limit - used[operation]),
            }
        return {"plan": policy.plan, "per_operation": per_operation}

    def run_recompute_sweep(self, batch_size: Optional[int], secret: Optional[str]) -> Dict[str, Any]:
        """Guarded by the shared sweep secret, not by a user identity."""
        try:
            expected = self.settings.sweep.secret
            if not expected or not secret or not hmac.compare_digest(expected.encode(), secret.encode()):
                raise Unauthorized("Unauthorized")
            result = self.sweep.run(self.settings.sweep.clamp(batch_size))
        except SummaryGuardError as e:
            return _error_payload(e)
        except Exception:
            return _internal_error("run_recompute_sweep")
        return {
            "processed_resource_ids": result.processed_resource_ids,
            "skipped_resource_ids": result.skipped_resource_ids,
            "failed_resource_ids": result.failed_resource_ids,
        }


def build_service(
    settings: Settings,
    generator: Optional[ArtifactGenerator] = None,
    clock: Clock = utc_now,
) -> SummaryService:
    """Wire the service against the settings' database.

    Args:
        settings: Validated settings
        generator: Artifact generator (defaults to the OpenAI-backed one)
        clock: Time source, injectable for tests

    Returns:
        Ready-to-use SummaryService
    """
    if generator is None:
        from summary_guard.sdk.openai_generator import OpenAISummaryGenerator
        generator = OpenAISummaryGenerator(settings.generator)

    db_path = settings.db_path
    actors = ActorResolver(StoredIdentityProvider(IdentityRepository(db_path)))
    plans = PlanResolver(settings, ProfileRepository(db_path))
    ledger = QuotaLedger(UsageRepository(db_path), clock)
    cache = ArtifactCache(ArtifactRepository(db_path), timedelta(hours=settings.cache.ttl_hours), clock)
    orchestrator = SummaryOrchestrator(
        plans=plans,
        ledger=ledger,
        cache=cache,
        documents=DocumentRepository(db_path),
        generator=BoundedGenerator(generator, settings.generator.timeout_seconds),
        max_documents=settings.generator.max_documents,
    )
    return SummaryService(
        settings=settings,
        actors=actors,
        plans=plans,
        ledger=ledger,
        cache=cache,
        orchestrator=orchestrator,
        sweep=RecomputationSweep(cache, orchestrator),
    )
