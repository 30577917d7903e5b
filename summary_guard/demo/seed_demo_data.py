# summary_guard/demo/seed_demo_data.py

from datetime import datetime, timedelta, timezone

from summary_guard.storage.models import Document, Profile
from summary_guard.storage.repository import (
    DocumentRepository,
    IdentityRepository,
    ProfileRepository,
    initialize_schema,
)

DEMO_TOKENS = {"demo-free-token": "user-free", "demo-pro-token": "user-pro"}


def seed_demo_data(db_path: str) -> int:
    """Insert two resources with reviews, one without, and two demo users.

    Returns the number of documents written.
    """
    initialize_schema(db_path)
    now = datetime.now(timezone.utc)

    documents = [
        Document("h1-r1", "h1", "Great location, friendly staff, tiny rooms.", 4, "en", now - timedelta(days=1)),
        Document("h1-r2", "h1", "Breakfast was cold and the wifi kept dropping.", 2, "en", now - timedelta(days=3)),
        Document("h1-r3", "h1", "Spotless and quiet, would stay again.", 5, "en", now - timedelta(days=7)),
        Document("h2-r1", "h2", "Lovely pool, but noisy at night.", 3, "en", now - timedelta(days=2)),
        Document("h2-r2", "h2", "Check-in took an hour.", 2, "en", None),
    ]

    docs = DocumentRepository(db_path)
    docs.add_documents(documents)
    docs.add_resource("h3", "Hotel without reviews")

    identities = IdentityRepository(db_path)
    for token, user_id in DEMO_TOKENS.items():
        identities.register(token, user_id)

    ProfileRepository(db_path).save(Profile("user-pro", "pro"))
    return len(documents)
