"""
Repository pattern for data access.

Handles database operations for usage counters, cached artifacts,
profiles, identities and the read-only document store.
"""

import hashlib
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .db import get_connection
from .models import CachedArtifact, Document, Profile, UsageCounter
from summary_guard.core.errors import StoreUnavailable


DEFAULT_DB_PATH = "summary_guard.db"


def to_iso(value: datetime) -> str:
    """Serialize a timestamp so that stored strings sort chronologically."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class _Repository:
    """Shared connection handling; every sqlite failure becomes StoreUnavailable."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    @contextmanager
    def _connection(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open store while trying to {action}: {e}", e) from e
        try:
            yield conn
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.rollback()
            raise StoreUnavailable(f"Store failure while trying to {action}: {e}", e) from e
        finally:
            conn.close()


class UsageRepository(_Repository):
    """Usage counters keyed by (actor_key, operation, day)."""

    def increment_within_window(
        self,
        actor_key: str,
        operation: str,
        day_key: str,
        window: Tuple[str, str],
        ceiling: int,
        now: datetime,
    ) -> Tuple[bool, int]:
        """Atomically admit one more use if the window total stays within the ceiling.

        The window total is the sum of daily rows with ``start <= day < end``.
        On admission only today's row is created or incremented. The whole
        read-compare-write runs inside one ``BEGIN IMMEDIATE`` transaction,
        so concurrent callers for the same counter are serialized by the store.

        Args:
            actor_key: Ledger key of the actor
            operation: Operation being metered
            day_key: Today's period key (YYYY-MM-DD)
            window: Half-open range of day keys gating admission
            ceiling: Maximum total allowed in the window
            now: Timestamp written to last_updated

        Returns:
            (allowed, used) where used is the window total after the call
        """
        start, end = window
        with self._connection("consume quota") as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("""
                SELECT COALESCE(SUM(count), 0) FROM usage_counters
                WHERE actor_key = ? AND operation = ? AND period_key >= ? AND period_key < ?
            """, (actor_key, operation, start, end)).fetchone()
            used = int(row[0])

            if used + 1 > ceiling:
                conn.rollback()
                return False, used

            conn.execute("""
                INSERT INTO usage_counters (actor_key, operation, period_key, count, last_updated)
                VALUES (?, ?, ?, 1, ?)
                ON CONFLICT(actor_key, operation, period_key)
                DO UPDATE SET count = count + 1, last_updated = excluded.last_updated
            """, (actor_key, operation, day_key, to_iso(now)))
            conn.commit()
            return True, used + 1

    def get_counter(self, actor_key: str, operation: str, period_key: str) -> Optional[UsageCounter]:
        with self._connection("read usage counter") as conn:
            row = conn.execute("""
                SELECT actor_key, operation, period_key, count, last_updated
                FROM usage_counters
                WHERE actor_key = ? AND operation = ? AND period_key = ?
            """, (actor_key, operation, period_key)).fetchone()
        if row is None:
            return None
        return UsageCounter(
            actor_key=row[0],
            operation=row[1],
            period_key=row[2],
            count=row[3],
            last_updated=from_iso(row[4]),
        )

    def usage_for_day(self, actor_key: str, day_key: str, operations: Sequence[str]) -> Dict[str, int]:
        """Sum today's rows per operation; operations with no row report 0."""
        with self._connection("read daily usage") as conn:
            rows = conn.execute("""
                SELECT operation, SUM(count) FROM usage_counters
                WHERE actor_key = ? AND period_key = ?
                GROUP BY operation
            """, (actor_key, day_key)).fetchall()
        by_operation = {operation: int(total) for operation, total in rows}
        return {operation: by_operation.get(operation, 0) for operation in operations}

    def count_rows(self) -> int:
        with self._connection("count usage rows") as conn:
            return conn.execute("SELECT COUNT(*) FROM usage_counters").fetchone()[0]


class ArtifactRepository(_Repository):
    """One cached artifact row per resource."""

    def get(self, resource_id: str) -> Optional[CachedArtifact]:
        with self._connection("read cached artifact") as conn:
            row = conn.execute(
                "SELECT resource_id, body, computed_at FROM artifact_cache WHERE resource_id = ?",
                (resource_id,)
            ).fetchone()
        if row is None:
            return None
        return CachedArtifact(resource_id=row[0], body=json.loads(row[1]), computed_at=from_iso(row[2]))

    def upsert(self, resource_id: str, body: Dict, computed_at: datetime) -> bool:
        """Replace the row for a resource in a single statement.

        A write carrying an older timestamp than the stored row is ignored,
        so freshness never regresses when writers race.

        Returns:
            True if the row was written, False if a newer row was kept
        """
        with self._connection("write cached artifact") as conn:
            cursor = conn.execute("""
                INSERT INTO artifact_cache (resource_id, body, computed_at)
                VALUES (?, ?, ?)
                ON CONFLICT(resource_id) DO UPDATE SET
                    body = excluded.body,
                    computed_at = excluded.computed_at
                WHERE excluded.computed_at >= artifact_cache.computed_at
            """, (resource_id, json.dumps(body, ensure_ascii=False, sort_keys=True), to_iso(computed_at)))
            written = cursor.rowcount > 0
        return written

    def list_stale(self, cutoff: datetime, limit: int = 2000) -> List[str]:
        """Resource ids whose artifact was computed at or before cutoff, oldest first."""
        with self._connection("scan stale artifacts") as conn:
            rows = conn.execute("""
                SELECT resource_id FROM artifact_cache
                WHERE computed_at <= ?
                ORDER BY computed_at ASC
                LIMIT ?
            """, (to_iso(cutoff), limit)).fetchall()
        return [row[0] for row in rows]

    def list_missing(self, limit: int = 1000) -> List[str]:
        """Known resources that have no cached artifact at all."""
        with self._connection("scan resources without artifacts") as conn:
            rows = conn.execute("""
                SELECT r.id FROM resources r
                LEFT JOIN artifact_cache c ON c.resource_id = r.id
                WHERE c.resource_id IS NULL
                ORDER BY r.id
                LIMIT ?
            """, (limit,)).fetchall()
        return [row[0] for row in rows]


class ProfileRepository(_Repository):
    """Stored plan profiles of identified users."""

    def get(self, user_id: str) -> Optional[Profile]:
        with self._connection("read profile") as conn:
            row = conn.execute("""
                SELECT user_id, plan, analyze_limit, reviews_limit, import_limit
                FROM profiles WHERE user_id = ?
            """, (user_id,)).fetchone()
        if row is None:
            return None
        return Profile(
            user_id=row[0],
            plan=row[1],
            limits={"analyze": row[2], "reviews": row[3], "import": row[4]},
        )

    def save(self, profile: Profile) -> None:
        with self._connection("save profile") as conn:
            conn.execute("""
                INSERT INTO profiles (user_id, plan, analyze_limit, reviews_limit, import_limit)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    plan = excluded.plan,
                    analyze_limit = excluded.analyze_limit,
                    reviews_limit = excluded.reviews_limit,
                    import_limit = excluded.import_limit
            """, (
                profile.user_id,
                profile.plan,
                profile.limits.get("analyze"),
                profile.limits.get("reviews"),
                profile.limits.get("import"),
            ))


class IdentityRepository(_Repository):
    """Maps bearer tokens to user ids. Only token hashes are stored."""

    @staticmethod
    def _hash(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    def register(self, token: str, user_id: str) -> None:
        with self._connection("register identity") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO identities (token_hash, user_id) VALUES (?, ?)",
                (self._hash(token), user_id)
            )

    def lookup(self, token: str) -> Optional[str]:
        with self._connection("verify identity") as conn:
            row = conn.execute(
                "SELECT user_id FROM identities WHERE token_hash = ?", (self._hash(token),)
            ).fetchone()
        return row[0] if row else None


class DocumentRepository(_Repository):
    """Read side of the document store, plus the writes used for seeding."""

    def fetch_documents(self, resource_id: str, limit: int = 200) -> List[Document]:
        """Newest documents first; undated documents sort last."""
        with self._connection("fetch documents") as conn:
            rows = conn.execute("""
                SELECT id, resource_id, text, rating, lang, created_at
                FROM documents
                WHERE resource_id = ?
                ORDER BY created_at IS NULL, created_at DESC
                LIMIT ?
            """, (resource_id, limit)).fetchall()
        return [
            Document(
                id=row[0],
                resource_id=row[1],
                text=row[2],
                rating=row[3],
                lang=row[4],
                created_at=from_iso(row[5]),
            )
            for row in rows
        ]

    def add_resource(self, resource_id: str, name: Optional[str] = None) -> None:
        with self._connection("add resource") as conn:
            conn.execute(
                "INSERT OR IGNORE INTO resources (id, name) VALUES (?, ?)", (resource_id, name)
            )

    def add_documents(self, documents: Iterable[Document]) -> None:
        """Insert documents atomically; their resources are created if missing."""
        documents = list(documents)
        if not documents:
            return
        with self._connection("add documents") as conn:
            conn.execute("BEGIN IMMEDIATE")
            for doc in documents:
                conn.execute(
                    "INSERT OR IGNORE INTO resources (id, name) VALUES (?, NULL)", (doc.resource_id,)
                )
                conn.execute("""
                    INSERT OR REPLACE INTO documents (id, resource_id, text, rating, lang, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    doc.id,
                    doc.resource_id,
                    doc.text,
                    doc.rating,
                    doc.lang,
                    to_iso(doc.created_at) if doc.created_at else None,
                ))
            conn.commit()

    def count_resources(self) -> int:
        with self._connection("count resources") as conn:
            return conn.execute("SELECT COUNT(*) FROM resources").fetchone()[0]


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create all tables if they don't exist.

    usage_counters carries the uniqueness constraint that keeps one
    logical row per (actor_key, operation, period_key).

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS usage_counters (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                actor_key TEXT NOT NULL,
                operation TEXT NOT NULL,
                period_key TEXT NOT NULL,
                count INTEGER NOT NULL,
                last_updated TEXT,
                UNIQUE (actor_key, operation, period_key)
            );

            CREATE TABLE IF NOT EXISTS artifact_cache (
                resource_id TEXT PRIMARY KEY,
                body TEXT NOT NULL,
                computed_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS profiles (
                user_id TEXT PRIMARY KEY,
                plan TEXT NOT NULL DEFAULT 'free',
                analyze_limit INTEGER,
                reviews_limit INTEGER,
                import_limit INTEGER
            );

            CREATE TABLE IF NOT EXISTS identities (
                token_hash TEXT PRIMARY KEY,
                user_id TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS resources (
                id TEXT PRIMARY KEY,
                name TEXT
            );

            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                resource_id TEXT NOT NULL REFERENCES resources(id),
                text TEXT NOT NULL,
                rating REAL,
                lang TEXT,
                created_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_documents_resource
                ON documents (resource_id, created_at);
        """)
    finally:
        conn.close()
