"""
Tests for the summary orchestrator.

Covers the cache-hit, quota, fallback, failure and timeout paths end to end
against a temporary database.
"""

import threading
from contextlib import ExitStack
from dataclasses import replace

import pytest

from summary_guard.config.loader import GeneratorConfig
from summary_guard.core.actors import Actor
from summary_guard.core.errors import (
    GenerationFailed,
    GeneratorBusy,
    InvalidInput,
    NoInputData,
    QuotaExceeded,
    SignInRequired,
)
from summary_guard.storage.models import Profile
from summary_guard.storage.repository import ProfileRepository, UsageRepository


class BlockingGenerator:
    """Never returns until released."""

    def __init__(self):
        self.release = threading.Event()

    def generate(self, documents):
        self.release.wait(5)
        return {"pros": [], "cons": [], "sentiment": "neutral", "topics": [], "model": "late"}


@pytest.fixture
def identified(db_path):
    ProfileRepository(db_path).save(Profile("u1", "free", {"analyze": 3}))
    return Actor.identified("u1")


class TestScenarios:
    """End-to-end request flows."""

    def test_cache_miss_generates_and_consumes(
        self, make_service, add_documents, generator, identified, db_path, clock
    ):
        """Test a cache miss generates, stores and consumes quota."""
        add_documents("h1")
        service = make_service()

        result = service.orchestrator.get_artifact("h1", identified, False)

        assert result.served_from_cache is False
        assert result.body["sentiment"] == "positive"
        assert result.computed_at == clock()
        assert len(generator.calls) == 1
        assert UsageRepository(db_path).get_counter("user:u1", "analyze", "2024-03-15").count == 1
        assert service.cache.get("h1").body == result.body

    def test_repeat_within_ttl_is_free(self, make_service, add_documents, generator, identified, db_path):
        """Test a fresh hit consumes no quota."""
        add_documents("h1")
        service = make_service()
        service.orchestrator.get_artifact("h1", identified, False)

        result = service.orchestrator.get_artifact("h1", identified, False)

        assert result.served_from_cache is True
        assert len(generator.calls) == 1
        assert UsageRepository(db_path).get_counter("user:u1", "analyze", "2024-03-15").count == 1

    def test_anonymous_monthly_ceiling_requires_sign_in(self, make_service, add_documents, generator):
        """Test anonymous actors over the ceiling are asked to sign in."""
        add_documents("h1", "h2", "h3")
        service = make_service(anonymous_limits={"analyze": 2})
        actor = Actor.anonymous("5.6.7.8")

        assert service.orchestrator.get_artifact("h1", actor, False).served_from_cache is False
        assert service.orchestrator.get_artifact("h2", actor, False).served_from_cache is False
        with pytest.raises(SignInRequired):
            service.orchestrator.get_artifact("h3", actor, False)
        assert len(generator.calls) == 2

    def test_cache_hit_allowed_when_quota_exhausted(self, make_service, add_documents, identified):
        """Test fresh hits are served after the quota runs out."""
        add_documents("h1", "h2", "h3", "h4")
        service = make_service()
        for resource_id in ("h1", "h2", "h3"):
            service.orchestrator.get_artifact(resource_id, identified, False)

        assert service.orchestrator.get_artifact("h1", identified, False).served_from_cache is True
        with pytest.raises(QuotaExceeded) as exc_info:
            service.orchestrator.get_artifact("h4", identified, False)
        assert exc_info.value.remaining == 0
        assert exc_info.value.plan == "free"

    def test_stale_cache_regenerates(self, make_service, add_documents, generator, identified, clock):
        """Test a stale artifact is regenerated."""
        add_documents("h1")
        service = make_service()
        service.orchestrator.get_artifact("h1", identified, False)
        clock.advance(hours=25)

        result = service.orchestrator.get_artifact("h1", identified, False)

        assert result.served_from_cache is False
        assert result.computed_at == clock()
        assert len(generator.calls) == 2


class TestForceRefresh:
    """Forced refresh skips the freshness check but not the quota."""

    def test_force_refresh_bypasses_fresh_cache(
        self, make_service, add_documents, generator, identified, db_path
    ):
        """Test force refresh regenerates and consumes quota."""
        add_documents("h1")
        service = make_service()
        service.orchestrator.get_artifact("h1", identified, False)

        result = service.orchestrator.get_artifact("h1", identified, True)

        assert result.served_from_cache is False
        assert len(generator.calls) == 2
        assert UsageRepository(db_path).get_counter("user:u1", "analyze", "2024-03-15").count == 2


class TestFallbacks:
    """No input data and generation failures."""

    def test_no_documents_no_cache(self, make_service, identified):
        """Test a resource with nothing to summarize is reported."""
        service = make_service()
        with pytest.raises(NoInputData):
            service.orchestrator.get_artifact("empty", identified, False)

    def test_no_documents_serves_stale_cache(self, make_service, identified, clock, generator):
        """Test a stale artifact is served when documents are gone."""
        service = make_service()
        service.cache.upsert("h9", {"pros": ["old"]})
        clock.advance(days=3)

        result = service.orchestrator.get_artifact("h9", identified, False)

        assert result.served_from_cache is True
        assert result.body == {"pros": ["old"]}
        assert generator.calls == []

    def test_generation_failure_keeps_quota_spent(
        self, make_service, add_documents, failing_generator, identified, db_path
    ):
        """Test a failed generation keeps the cache and the charge."""
        add_documents("h1")
        service = make_service(generator_override=failing_generator(RuntimeError("model down")))

        with pytest.raises(GenerationFailed):
            service.orchestrator.get_artifact("h1", identified, False)

        assert service.cache.get("h1") is None
        assert UsageRepository(db_path).get_counter("user:u1", "analyze", "2024-03-15").count == 1

    def test_generation_timeout(self, make_service, add_documents, identified, db_path):
        """Test a hung generator is reported as a timeout."""
        add_documents("h1")
        blocking = BlockingGenerator()
        service = make_service(
            generator_override=blocking,
            generator=replace(GeneratorConfig(), timeout_seconds=0.05),
        )
        try:
            with pytest.raises(GenerationFailed, match="timed out"):
                service.orchestrator.get_artifact("h1", identified, False)
            assert service.cache.get("h1") is None
        finally:
            blocking.release.set()

    def test_busy_generator_consumes_no_quota(
        self, make_service, add_documents, generator, identified, db_path
    ):
        """Test a generator with no free worker is refused before any charge."""
        add_documents("h1")
        service = make_service()
        bounded = service.orchestrator.generator
        with ExitStack() as stack:
            for _ in range(bounded.max_workers):
                stack.enter_context(bounded.reserve("other"))
            with pytest.raises(GeneratorBusy):
                service.orchestrator.get_artifact("h1", identified, False)

        assert generator.calls == []
        assert UsageRepository(db_path).count_rows() == 0

        assert service.orchestrator.get_artifact("h1", identified, False).served_from_cache is False
        assert UsageRepository(db_path).get_counter("user:u1", "analyze", "2024-03-15").count == 1

    def test_timed_out_calls_leave_later_requests_uncharged(
        self, make_service, add_documents, identified, db_path
    ):
        """Test requests arriving while every worker hangs are not charged."""
        add_documents("h1", "h2")
        ProfileRepository(db_path).save(Profile("u1", "pro"))
        blocking = BlockingGenerator()
        service = make_service(
            generator_override=blocking,
            generator=replace(GeneratorConfig(), timeout_seconds=0.05),
        )
        try:
            for _ in range(service.orchestrator.generator.max_workers):
                with pytest.raises(GenerationFailed, match="timed out"):
                    service.orchestrator.get_artifact("h1", identified, True)

            with pytest.raises(GeneratorBusy):
                service.orchestrator.get_artifact("h2", identified, False)
        finally:
            blocking.release.set()

        counter = UsageRepository(db_path).get_counter("user:u1", "analyze", "2024-03-15")
        assert counter.count == service.orchestrator.generator.max_workers

    @pytest.mark.parametrize("resource_id", ["", "   ", None, 42])
    def test_invalid_resource_id(self, make_service, identified, db_path, resource_id):
        """Test malformed resource ids are rejected before any charge."""
        service = make_service()
        with pytest.raises(InvalidInput):
            service.orchestrator.get_artifact(resource_id, identified, False)
        assert UsageRepository(db_path).count_rows() == 0


class TestPlanChanges:
    """The policy is re-read on every call."""

    def test_upgrade_takes_effect_immediately(self, make_service, add_documents, db_path):
        """Test a plan upgrade lifts the ceiling at once."""
        add_documents("h1", "h2")
        ProfileRepository(db_path).save(Profile("u2", "free", {"analyze": 1}))
        service = make_service()
        actor = Actor.identified("u2")
        service.orchestrator.get_artifact("h1", actor, False)
        with pytest.raises(QuotaExceeded):
            service.orchestrator.get_artifact("h2", actor, False)

        ProfileRepository(db_path).save(Profile("u2", "pro"))

        assert service.orchestrator.get_artifact("h2", actor, False).served_from_cache is False
