"""
Shared fixtures: a temporary database, a controllable clock and a stub generator.
"""

import os
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from summary_guard.api.service import build_service
from summary_guard.config.loader import default_settings
from summary_guard.storage.models import Document
from summary_guard.storage.repository import DocumentRepository, initialize_schema


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class StubGenerator:
    """Records calls and returns a canned summary, or raises."""

    def __init__(self, body=None, error=None):
        self.body = body or {
            "pros": ["location"],
            "cons": ["wifi"],
            "sentiment": "positive",
            "topics": ["staff"],
            "model": "stub",
        }
        self.error = error
        self.calls = []

    def generate(self, documents):
        self.calls.append([doc.id for doc in documents])
        if self.error is not None:
            raise self.error
        return dict(self.body)


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "test.db")
        initialize_schema(path)
        yield path


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def generator():
    return StubGenerator()


@pytest.fixture
def add_documents(db_path):
    """Give each named resource a couple of documents."""
    def _add(*resource_ids, count=2):
        repo = DocumentRepository(db_path)
        repo.add_documents([
            Document(
                id=f"{resource_id}-d{i}",
                resource_id=resource_id,
                text=f"review {i} of {resource_id}",
                rating=4,
                lang="en",
                created_at=datetime(2024, 3, 1 + i, tzinfo=timezone.utc),
            )
            for resource_id in resource_ids
            for i in range(count)
        ])
    return _add


@pytest.fixture
def make_service(db_path, clock, generator):
    """Build a wired service; keyword arguments override settings fields."""
    def _make(generator_override=None, **overrides):
        settings = replace(default_settings(), db_path=db_path, **overrides)
        return build_service(settings, generator=generator_override or generator, clock=clock)
    return _make


@pytest.fixture
def failing_generator():
    """Factory for a generator that raises the given error."""
    def _make(error):
        return StubGenerator(error=error)
    return _make
