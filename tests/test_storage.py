"""
Unit tests for storage layer.

Tests schema creation, counter and cache rows, and store failures.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from summary_guard.core.errors import StoreUnavailable
from summary_guard.storage.db import get_connection
from summary_guard.storage.models import Document, Profile
from summary_guard.storage.repository import (
    ArtifactRepository,
    DocumentRepository,
    IdentityRepository,
    ProfileRepository,
    UsageRepository,
    initialize_schema,
)

NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Test initialize_schema creates every table."""
        """Verify all tables are created."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
                tables = {row[0] for row in cursor.fetchall()}
                assert {
                    "usage_counters", "artifact_cache", "profiles",
                    "identities", "resources", "documents",
                } <= tables

                cursor = conn.execute("PRAGMA table_info(usage_counters)")
                column_names = [col[1] for col in cursor.fetchall()]
                assert column_names == [
                    'id', 'actor_key', 'operation', 'period_key', 'count', 'last_updated'
                ]
            finally:
                conn.close()

    def test_schema_is_idempotent(self, db_path):
        """Test initializing twice is harmless."""
        initialize_schema(db_path)
        initialize_schema(db_path)


class TestUsageRepository:
    """Test counter rows."""

    def test_first_use_creates_row(self, db_path):
        """Test the first increment creates a counter row."""
        repo = UsageRepository(db_path)

        allowed, used = repo.increment_within_window(
            "user:1", "analyze", "2024-03-15", ("2024-03-15", "2024-03-16"), 3, NOW
        )

        assert allowed is True
        assert used == 1
        counter = repo.get_counter("user:1", "analyze", "2024-03-15")
        assert counter.count == 1
        assert counter.last_updated == NOW

    def test_single_row_per_key(self, db_path):
        """Test increments update one row per key."""
        repo = UsageRepository(db_path)
        for _ in range(3):
            repo.increment_within_window(
                "user:1", "analyze", "2024-03-15", ("2024-03-15", "2024-03-16"), 10, NOW
            )

        assert repo.count_rows() == 1
        assert repo.get_counter("user:1", "analyze", "2024-03-15").count == 3

    def test_denied_leaves_count_unchanged(self, db_path):
        """Test a denied increment writes nothing."""
        repo = UsageRepository(db_path)
        window = ("2024-03-15", "2024-03-16")
        repo.increment_within_window("user:1", "analyze", "2024-03-15", window, 1, NOW)

        allowed, used = repo.increment_within_window("user:1", "analyze", "2024-03-15", window, 1, NOW)

        assert allowed is False
        assert used == 1
        assert repo.get_counter("user:1", "analyze", "2024-03-15").count == 1

    def test_window_sums_daily_rows(self, db_path):
        """Test the window sums rows across days."""
        repo = UsageRepository(db_path)
        month = ("2024-03-01", "2024-04-01")
        repo.increment_within_window("ip:1.2.3.4", "analyze", "2024-03-01", month, 2, NOW)

        allowed, used = repo.increment_within_window("ip:1.2.3.4", "analyze", "2024-03-15", month, 2, NOW)
        assert (allowed, used) == (True, 2)

        allowed, used = repo.increment_within_window("ip:1.2.3.4", "analyze", "2024-03-20", month, 2, NOW)
        assert (allowed, used) == (False, 2)
        assert repo.get_counter("ip:1.2.3.4", "analyze", "2024-03-20") is None

    def test_usage_for_day(self, db_path):
        """Test per-day usage lookup."""
        repo = UsageRepository(db_path)
        day = ("2024-03-15", "2024-03-16")
        repo.increment_within_window("user:1", "analyze", "2024-03-15", day, 5, NOW)
        repo.increment_within_window("user:1", "analyze", "2024-03-15", day, 5, NOW)
        repo.increment_within_window("user:1", "import", "2024-03-15", day, 5, NOW)
        repo.increment_within_window("user:1", "analyze", "2024-03-14", ("2024-03-14", "2024-03-15"), 5, NOW)

        usage = repo.usage_for_day("user:1", "2024-03-15", ["analyze", "reviews", "import"])

        assert usage == {"analyze": 2, "reviews": 0, "import": 1}


class TestArtifactRepository:
    """Test cache rows."""

    def test_upsert_and_get(self, db_path):
        """Test an artifact round-trips through the store."""
        repo = ArtifactRepository(db_path)
        repo.upsert("h1", {"pros": ["a"], "sentiment": "positive"}, NOW)

        artifact = repo.get("h1")

        assert artifact.resource_id == "h1"
        assert artifact.body == {"pros": ["a"], "sentiment": "positive"}
        assert artifact.computed_at == NOW

    def test_upsert_replaces_in_place(self, db_path):
        """Test a newer write replaces the row."""
        repo = ArtifactRepository(db_path)
        assert repo.upsert("h1", {"v": 1}, NOW) is True
        assert repo.upsert("h1", {"v": 2}, NOW + timedelta(minutes=1)) is True

        assert repo.get("h1").body == {"v": 2}
        assert repo.get("h1").computed_at == NOW + timedelta(minutes=1)

    def test_older_write_does_not_regress(self, db_path):
        """Test an older write is ignored."""
        repo = ArtifactRepository(db_path)
        repo.upsert("h1", {"v": "new"}, NOW)
        written = repo.upsert("h1", {"v": "old"}, NOW - timedelta(hours=1))

        assert written is False

        artifact = repo.get("h1")
        assert artifact.body == {"v": "new"}
        assert artifact.computed_at == NOW

    def test_get_missing(self, db_path):
        """Test a missing artifact reads as None."""
        assert ArtifactRepository(db_path).get("nope") is None

    def test_list_stale_oldest_first(self, db_path):
        """Test stale artifacts are listed oldest first."""
        repo = ArtifactRepository(db_path)
        repo.upsert("fresh", {}, NOW)
        repo.upsert("old", {}, NOW - timedelta(days=2))
        repo.upsert("older", {}, NOW - timedelta(days=3))

        assert repo.list_stale(NOW - timedelta(days=1)) == ["older", "old"]

    def test_list_missing(self, db_path):
        """Test resources without artifacts are listed."""
        docs = DocumentRepository(db_path)
        docs.add_resource("a")
        docs.add_resource("b")
        ArtifactRepository(db_path).upsert("a", {}, NOW)

        assert ArtifactRepository(db_path).list_missing() == ["b"]


class TestOtherRepositories:
    """Test profiles, identities and documents."""

    def test_profile_round_trip(self, db_path):
        """Test profiles round-trip with overrides."""
        repo = ProfileRepository(db_path)
        repo.save(Profile("u1", "pro", {"analyze": 42}))

        profile = repo.get("u1")

        assert profile.plan == "pro"
        assert profile.limits == {"analyze": 42, "reviews": None, "import": None}
        assert repo.get("u2") is None

    def test_identity_lookup(self, db_path):
        """Test tokens resolve to their user."""
        repo = IdentityRepository(db_path)
        repo.register("token-abc", "u1")

        assert repo.lookup("token-abc") == "u1"
        assert repo.lookup("token-xyz") is None

    def test_identity_stores_only_hash(self, db_path):
        """Test raw tokens are never stored."""
        IdentityRepository(db_path).register("token-abc", "u1")

        conn = get_connection(db_path)
        try:
            stored = conn.execute("SELECT token_hash FROM identities").fetchone()[0]
        finally:
            conn.close()
        assert "token-abc" not in stored

    def test_documents_newest_first(self, db_path):
        """Test documents come back newest first, undated last."""
        repo = DocumentRepository(db_path)
        repo.add_documents([
            Document("d1", "h1", "old", created_at=NOW - timedelta(days=2)),
            Document("d2", "h1", "new", created_at=NOW),
            Document("d3", "h1", "undated"),
            Document("d4", "h2", "other"),
        ])

        docs = repo.fetch_documents("h1")

        assert [d.id for d in docs] == ["d2", "d1", "d3"]
        assert repo.fetch_documents("h1", limit=1)[0].id == "d2"
        assert repo.count_resources() == 2


class TestStoreFailures:
    """Test that sqlite errors surface as StoreUnavailable."""

    def test_missing_schema(self):
        """Test using a store without tables raises StoreUnavailable."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ArtifactRepository(os.path.join(temp_dir, "empty.db"))
            with pytest.raises(StoreUnavailable) as exc_info:
                repo.get("h1")
            assert exc_info.value.original_exception is not None

    def test_unopenable_database(self):
        """Test an unopenable database raises StoreUnavailable."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = UsageRepository(os.path.join(temp_dir, "missing_dir", "x.db"))
            with pytest.raises(StoreUnavailable):
                repo.increment_within_window(
                    "user:1", "analyze", "2024-03-15", ("2024-03-15", "2024-03-16"), 3, NOW
                )
