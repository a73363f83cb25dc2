from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import Counter
from dataclasses import dataclass, field

from fastapi.concurrency import run_in_threadpool

from jobmatch.config import BACKFILL_BATCH_SIZE, BATCH_QUERY_DELAY_SECONDS, INGEST_BATCH_SIZE
from jobmatch.ingest import CatalogIngestor, Deduplicator
from jobmatch.models import Preferences, ProviderQuery, RawListing
from jobmatch.providers import JobProvider
from jobmatch.store import SqliteCatalogStore
from jobmatch.worktype import detect_work_type

LOGGER = logging.getLogger("jobmatch.refresh")

BATCH_RESULTS_PER_PAGE = 20


def build_batch_queries(preferences: list[Preferences]) -> list[ProviderQuery]:
    """One query per distinct (role, location) pair across every saved profile.

    A profile without roles or locations contributes a blank on that side,
    but a pair blank on both sides is never searched.
    """
    seen: set[str] = set()
    queries: list[ProviderQuery] = []
    for item in preferences:
        roles = [role.strip() for role in item.target_roles if role.strip()] or [""]
        locations = [loc.strip() for loc in item.target_locations if loc.strip()] or [""]
        for role in roles:
            for location in locations:
                if not role and not location:
                    continue
                key = f"{role.lower()}|{location.lower()}"
                if key in seen:
                    continue
                seen.add(key)
                queries.append(
                    ProviderQuery(
                        keywords=role,
                        location=location or None,
                        results_per_page=BATCH_RESULTS_PER_PAGE,
                    )
                )
    return queries


@dataclass
class RefreshResult:
    queries: int = 0
    fetched: int = 0
    inserted_keys: list[str] = field(default_factory=list)
    failed_queries: int = 0
    failed_batches: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "success": True,
            "queries": self.queries,
            "fetched": self.fetched,
            "jobsInserted": len(self.inserted_keys),
            "failedQueries": self.failed_queries,
            "failedBatches": self.failed_batches,
            "durationMs": self.duration_ms,
        }


class CatalogRefresher:
    """Pre-populates the catalog from every user's saved preferences.

    Queries run one after another with a pause between them; a failing
    query is logged and skipped. New rows are classified by work type
    from their text before insertion.
    """

    def __init__(
        self,
        store: SqliteCatalogStore,
        provider: JobProvider,
        *,
        delay_seconds: float = BATCH_QUERY_DELAY_SECONDS,
        batch_size: int = INGEST_BATCH_SIZE,
    ) -> None:
        self.store = store
        self.provider = provider
        self.delay_seconds = delay_seconds
        self.deduplicator = Deduplicator(store, batch_size=batch_size)
        self.ingestor = CatalogIngestor(
            store, batch_size=batch_size, work_type_detector=detect_work_type
        )

    async def run(self) -> RefreshResult:
        started = time.perf_counter()
        preferences = await run_in_threadpool(self.store.list_preferences)
        queries = build_batch_queries(preferences)
        result = RefreshResult(queries=len(queries))
        if not queries:
            LOGGER.info(json.dumps({"event": "refresh_skipped", "reason": "no_preferences"}))
            return result

        found: list[RawListing] = []
        for index, query in enumerate(queries):
            if index > 0 and self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            try:
                found.extend(await self.provider.search(query))
            except Exception as exc:
                result.failed_queries += 1
                LOGGER.warning(
                    json.dumps(
                        {
                            "event": "refresh_query_failed",
                            "keywords": query.keywords,
                            "location": query.location,
                            "error": str(exc),
                        }
                    )
                )
        result.fetched = len(found)

        fresh = await self.deduplicator.filter_new(found)
        ingested = await self.ingestor.ingest(fresh)
        result.inserted_keys = ingested.inserted_keys
        result.failed_batches = ingested.failed_batches
        result.duration_ms = int((time.perf_counter() - started) * 1000)
        LOGGER.info(
            json.dumps(
                {
                    "event": "refresh_complete",
                    "queries": result.queries,
                    "fetched": result.fetched,
                    "inserted": len(result.inserted_keys),
                    "failed_queries": result.failed_queries,
                    "duration_ms": result.duration_ms,
                }
            )
        )
        return result


@dataclass
class BackfillStats:
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    by_type: Counter[str] = field(default_factory=Counter)

    def to_dict(self) -> dict[str, object]:
        return {
            "processed": self.processed,
            "updated": self.updated,
            "skipped": self.skipped,
            "byType": dict(self.by_type),
        }


def backfill_work_types(
    store: SqliteCatalogStore,
    *,
    batch_size: int = BACKFILL_BATCH_SIZE,
    dry_run: bool = False,
) -> BackfillStats:
    """Reclassify listings still marked "any" from their title and description.

    With ``dry_run`` nothing is written; the stats report what would change.
    """
    stats = BackfillStats()
    after_id = ""
    while True:
        page = store.listings_by_remote_type("any", after_id=after_id, limit=batch_size)
        if not page:
            break
        after_id = page[-1].id

        updates: dict[str, str] = {}
        for listing in page:
            stats.processed += 1
            work_type = detect_work_type(listing.title, listing.description)
            if work_type == "any":
                stats.skipped += 1
                continue
            updates[listing.id] = work_type
            stats.by_type[work_type] += 1

        if updates and not dry_run:
            store.update_remote_types(updates)
        stats.updated += len(updates)

    LOGGER.info(json.dumps({"event": "work_type_backfill", "dry_run": dry_run, **stats.to_dict()}))
    return stats
