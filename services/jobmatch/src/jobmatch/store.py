from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from common.utils import now_utc_iso, parse_iso_datetime

from jobmatch.models import CacheEntry, JobListing, Preferences, PreferencesPayload, ScoredListing

LISTING_COLUMNS = (
    "id",
    "title",
    "company",
    "location",
    "remote_type",
    "description",
    "requirements",
    "salary_min",
    "salary_max",
    "salary_currency",
    "salary_type",
    "source",
    "source_url",
    "dedup_key",
    "company_logo_url",
    "skills_json",
    "experience_level",
    "employment_type",
    "posted_at",
    "created_at",
)

COLUMN_DEFAULTS = {
    "remote_type": "any",
    "salary_currency": "PLN",
    "salary_type": "monthly",
    "source_url": "",
}


class CatalogStore(Protocol):
    def search_listings(
        self,
        terms: Sequence[str],
        *,
        posted_since: datetime,
        limit: int,
    ) -> list[JobListing]: ...

    def existing_dedup_keys(self, keys: Sequence[str]) -> set[str]: ...

    def insert_listings(self, rows: Sequence[dict[str, Any]]) -> int: ...

    def listings_by_dedup_keys(self, keys: Sequence[str]) -> list[JobListing]: ...

    def get_cache_entry(
        self,
        user_id: str,
        fingerprint: str,
        *,
        created_after: datetime,
    ) -> CacheEntry | None: ...

    def upsert_cache_entry(self, entry: CacheEntry) -> None: ...


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so user text only ever matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def to_utc_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


class SqliteCatalogStore:
    def __init__(self, database_path: str) -> None:
        self.database_path = Path(database_path)
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        with self._lock:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.database_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS job_listings (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    company TEXT NOT NULL,
                    location TEXT,
                    remote_type TEXT NOT NULL DEFAULT 'any',
                    description TEXT,
                    requirements TEXT,
                    salary_min INTEGER,
                    salary_max INTEGER,
                    salary_currency TEXT NOT NULL DEFAULT 'PLN',
                    salary_type TEXT NOT NULL DEFAULT 'monthly',
                    source TEXT NOT NULL,
                    source_url TEXT NOT NULL DEFAULT '',
                    dedup_key TEXT NOT NULL UNIQUE,
                    company_logo_url TEXT,
                    skills_json TEXT NOT NULL DEFAULT '[]',
                    experience_level TEXT,
                    employment_type TEXT,
                    posted_at TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_job_listings_posted_at
                    ON job_listings(posted_at);

                CREATE TABLE IF NOT EXISTS job_recommendation_cache (
                    user_id TEXT NOT NULL,
                    fingerprint TEXT NOT NULL,
                    recommendations_json TEXT NOT NULL,
                    search_terms_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, fingerprint)
                );

                CREATE TABLE IF NOT EXISTS job_preferences (
                    user_id TEXT PRIMARY KEY,
                    config_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS ai_usage (
                    user_id TEXT NOT NULL,
                    period TEXT NOT NULL,
                    requests INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, period)
                );
                """
            )
            self._connection.commit()

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None

    def search_listings(
        self,
        terms: Sequence[str],
        *,
        posted_since: datetime,
        limit: int,
    ) -> list[JobListing]:
        escaped = [escape_like(term.strip()) for term in terms if term.strip()]
        if not escaped:
            return []

        clauses: list[str] = []
        params: list[Any] = []
        for term in escaped:
            pattern = f"%{term}%"
            clauses.append(
                "(title LIKE ? ESCAPE '\\' OR company LIKE ? ESCAPE '\\' "
                "OR description LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern, pattern])
        params.extend([to_utc_iso(posted_since), limit])

        query = f"""
            SELECT {", ".join(LISTING_COLUMNS)}
            FROM job_listings
            WHERE ({" OR ".join(clauses)})
              AND posted_at IS NOT NULL
              AND posted_at >= ?
            ORDER BY posted_at IS NULL, posted_at DESC
            LIMIT ?
        """
        with self._lock:
            rows = self.connection.execute(query, tuple(params)).fetchall()
        return [self._to_listing(row) for row in rows]

    def existing_dedup_keys(self, keys: Sequence[str]) -> set[str]:
        unique_keys = list(dict.fromkeys(keys))
        if not unique_keys:
            return set()
        placeholders = ", ".join("?" for _ in unique_keys)
        with self._lock:
            rows = self.connection.execute(
                f"SELECT dedup_key FROM job_listings WHERE dedup_key IN ({placeholders})",
                tuple(unique_keys),
            ).fetchall()
        return {row["dedup_key"] for row in rows}

    def insert_listings(self, rows: Sequence[dict[str, Any]]) -> int:
        """Insert rows, silently skipping any whose dedup_key already exists."""
        if not rows:
            return 0
        now = now_utc_iso()
        values = []
        for row in rows:
            record = {column: row.get(column) for column in LISTING_COLUMNS}
            record["id"] = record["id"] or str(uuid.uuid4())
            record["created_at"] = record["created_at"] or now
            for column, default in COLUMN_DEFAULTS.items():
                if record[column] is None:
                    record[column] = default
            record["skills_json"] = json.dumps(row.get("skills") or [])
            posted_at = row.get("posted_at")
            if isinstance(posted_at, str):
                posted_at = parse_iso_datetime(posted_at)
            record["posted_at"] = to_utc_iso(posted_at) if posted_at else None
            values.append(tuple(record[column] for column in LISTING_COLUMNS))

        placeholders = ", ".join("?" for _ in LISTING_COLUMNS)
        with self._lock:
            before = self.connection.total_changes
            try:
                self.connection.executemany(
                    f"""
                    INSERT INTO job_listings ({", ".join(LISTING_COLUMNS)})
                    VALUES ({placeholders})
                    ON CONFLICT(dedup_key) DO NOTHING
                    """,
                    values,
                )
                self.connection.commit()
            except sqlite3.Error:
                self.connection.rollback()
                raise
            return self.connection.total_changes - before

    def listings_by_dedup_keys(self, keys: Sequence[str]) -> list[JobListing]:
        unique_keys = list(dict.fromkeys(keys))
        if not unique_keys:
            return []
        placeholders = ", ".join("?" for _ in unique_keys)
        with self._lock:
            rows = self.connection.execute(
                f"""
                SELECT {", ".join(LISTING_COLUMNS)}
                FROM job_listings
                WHERE dedup_key IN ({placeholders})
                """,
                tuple(unique_keys),
            ).fetchall()
        return [self._to_listing(row) for row in rows]

    def list_listings(self, limit: int) -> list[JobListing]:
        with self._lock:
            rows = self.connection.execute(
                f"""
                SELECT {", ".join(LISTING_COLUMNS)}
                FROM job_listings
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [self._to_listing(row) for row in rows]

    def listings_by_remote_type(
        self,
        remote_type: str,
        *,
        after_id: str = "",
        limit: int = 100,
    ) -> list[JobListing]:
        """Page through listings of one work type, ordered by id for keyset paging."""
        with self._lock:
            rows = self.connection.execute(
                f"""
                SELECT {", ".join(LISTING_COLUMNS)}
                FROM job_listings
                WHERE remote_type = ? AND id > ?
                ORDER BY id
                LIMIT ?
                """,
                (remote_type, after_id, limit),
            ).fetchall()
        return [self._to_listing(row) for row in rows]

    def update_remote_types(self, updates: dict[str, str]) -> int:
        if not updates:
            return 0
        with self._lock:
            before = self.connection.total_changes
            try:
                self.connection.executemany(
                    "UPDATE job_listings SET remote_type = ? WHERE id = ?",
                    [(remote_type, listing_id) for listing_id, remote_type in updates.items()],
                )
                self.connection.commit()
            except sqlite3.Error:
                self.connection.rollback()
                raise
            return self.connection.total_changes - before

    def get_cache_entry(
        self,
        user_id: str,
        fingerprint: str,
        *,
        created_after: datetime,
    ) -> CacheEntry | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT user_id, fingerprint, recommendations_json, search_terms_json, created_at
                FROM job_recommendation_cache
                WHERE user_id = ? AND fingerprint = ? AND created_at >= ?
                """,
                (user_id, fingerprint, to_utc_iso(created_after)),
            ).fetchone()
        if row is None:
            return None
        return CacheEntry(
            user_id=row["user_id"],
            fingerprint=row["fingerprint"],
            recommendations=[
                ScoredListing.model_validate(item)
                for item in json.loads(row["recommendations_json"])
            ],
            search_terms=json.loads(row["search_terms_json"]),
            created_at=parse_iso_datetime(row["created_at"]),
        )

    def upsert_cache_entry(self, entry: CacheEntry) -> None:
        recommendations_json = json.dumps(
            [item.model_dump(mode="json", by_alias=True) for item in entry.recommendations]
        )
        with self._lock:
            self.connection.execute(
                """
                INSERT INTO job_recommendation_cache (
                    user_id,
                    fingerprint,
                    recommendations_json,
                    search_terms_json,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, fingerprint) DO UPDATE SET
                    recommendations_json = excluded.recommendations_json,
                    search_terms_json = excluded.search_terms_json,
                    created_at = excluded.created_at
                """,
                (
                    entry.user_id,
                    entry.fingerprint,
                    recommendations_json,
                    json.dumps(entry.search_terms),
                    to_utc_iso(entry.created_at),
                ),
            )
            self.connection.commit()

    def upsert_preferences(self, user_id: str, payload: PreferencesPayload) -> Preferences:
        with self._lock:
            now = now_utc_iso()
            self.connection.execute(
                """
                INSERT INTO job_preferences (user_id, config_json, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    config_json = excluded.config_json,
                    updated_at = excluded.updated_at
                """,
                (user_id, payload.model_dump_json(), now, now),
            )
            self.connection.commit()
            preferences = self.get_preferences(user_id)
        if preferences is None:
            raise KeyError(f"Unknown user_id: {user_id}")
        return preferences

    def get_preferences(self, user_id: str) -> Preferences | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT user_id, config_json, updated_at FROM job_preferences WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        config: dict[str, Any] = json.loads(row["config_json"])
        return Preferences(user_id=row["user_id"], updated_at=row["updated_at"], **config)

    def list_preferences(self) -> list[Preferences]:
        with self._lock:
            rows = self.connection.execute(
                "SELECT user_id, config_json, updated_at FROM job_preferences ORDER BY user_id"
            ).fetchall()
        return [
            Preferences(
                user_id=row["user_id"],
                updated_at=row["updated_at"],
                **json.loads(row["config_json"]),
            )
            for row in rows
        ]

    def usage_count(self, user_id: str, period: str) -> int:
        with self._lock:
            row = self.connection.execute(
                "SELECT requests FROM ai_usage WHERE user_id = ? AND period = ?",
                (user_id, period),
            ).fetchone()
        return int(row["requests"]) if row else 0

    def record_usage(self, user_id: str, period: str, units: int = 1) -> int:
        with self._lock:
            self.connection.execute(
                """
                INSERT INTO ai_usage (user_id, period, requests, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, period) DO UPDATE SET
                    requests = ai_usage.requests + excluded.requests,
                    updated_at = excluded.updated_at
                """,
                (user_id, period, units, now_utc_iso()),
            )
            self.connection.commit()
            return self.usage_count(user_id, period)

    def _to_listing(self, row: sqlite3.Row) -> JobListing:
        return JobListing(
            id=row["id"],
            title=row["title"],
            company=row["company"],
            location=row["location"],
            remote_type=row["remote_type"],
            description=row["description"],
            requirements=row["requirements"],
            salary_min=row["salary_min"],
            salary_max=row["salary_max"],
            salary_currency=row["salary_currency"],
            salary_type=row["salary_type"],
            source=row["source"],
            source_url=row["source_url"],
            dedup_key=row["dedup_key"],
            company_logo_url=row["company_logo_url"],
            skills=json.loads(row["skills_json"] or "[]"),
            experience_level=row["experience_level"],
            employment_type=row["employment_type"],
            posted_at=parse_iso_datetime(row["posted_at"]),
            created_at=row["created_at"],
        )
