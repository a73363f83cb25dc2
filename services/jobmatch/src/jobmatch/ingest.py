from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from common.utils import chunked
from fastapi.concurrency import run_in_threadpool

from jobmatch.config import INGEST_BATCH_SIZE
from jobmatch.hashing import build_dedup_key
from jobmatch.models import JobListing, RawListing, RemoteType
from jobmatch.store import CatalogStore

LOGGER = logging.getLogger("jobmatch.ingest")

WorkTypeDetector = Callable[[str, str | None, bool | None], RemoteType]


@dataclass
class IngestResult:
    listings: list[JobListing] = field(default_factory=list)
    inserted_keys: list[str] = field(default_factory=list)
    failed_batches: int = 0


def _round_salary(value: float | None) -> int | None:
    return round(value) if value else None


def to_catalog_row(
    dedup_key: str, raw: RawListing, remote_type: RemoteType | None = None
) -> dict[str, Any]:
    if remote_type is None:
        remote_type = "remote" if raw.is_remote else "any"
    return {
        "title": raw.title,
        "company": raw.company,
        "location": raw.location or None,
        "remote_type": remote_type,
        "description": raw.description or None,
        "requirements": None,
        "salary_min": _round_salary(raw.salary_min),
        "salary_max": _round_salary(raw.salary_max),
        "salary_currency": raw.salary_currency or "PLN",
        "salary_type": "monthly",
        "source": raw.source,
        "source_url": raw.apply_link or raw.url,
        "dedup_key": dedup_key,
        "company_logo_url": raw.company_logo_url or None,
        "skills": [],
        "experience_level": raw.experience_level or None,
        "employment_type": raw.employment_type or None,
        "posted_at": raw.posted_at or None,
    }


class Deduplicator:
    def __init__(self, store: CatalogStore, *, batch_size: int = INGEST_BATCH_SIZE) -> None:
        self.store = store
        self.batch_size = batch_size

    async def filter_new(self, raw_listings: list[RawListing]) -> dict[str, RawListing]:
        """Key fresh results by dedup key, dropping keys the catalog already holds.

        The first occurrence of a key within the run wins.
        """
        keyed: dict[str, RawListing] = {}
        for raw in raw_listings:
            key = build_dedup_key(raw.title, raw.company, raw.location)
            keyed.setdefault(key, raw)

        existing: set[str] = set()
        for batch in chunked(list(keyed), self.batch_size):
            try:
                existing |= await run_in_threadpool(self.store.existing_dedup_keys, batch)
            except sqlite3.Error as exc:
                LOGGER.warning(
                    json.dumps({"event": "dedup_lookup_failed", "keys": len(batch), "error": str(exc)})
                )

        fresh = {key: raw for key, raw in keyed.items() if key not in existing}
        LOGGER.info(
            json.dumps(
                {
                    "event": "dedup_complete",
                    "fetched": len(raw_listings),
                    "unique": len(keyed),
                    "new": len(fresh),
                }
            )
        )
        return fresh


class CatalogIngestor:
    """Best-effort batched upsert followed by a read-back of canonical rows."""

    def __init__(
        self,
        store: CatalogStore,
        *,
        batch_size: int = INGEST_BATCH_SIZE,
        work_type_detector: WorkTypeDetector | None = None,
    ) -> None:
        self.store = store
        self.batch_size = batch_size
        self.work_type_detector = work_type_detector

    def build_row(self, dedup_key: str, raw: RawListing) -> dict[str, Any]:
        if self.work_type_detector is None:
            return to_catalog_row(dedup_key, raw)
        remote_type = self.work_type_detector(raw.title, raw.description, raw.is_remote)
        return to_catalog_row(dedup_key, raw, remote_type)

    async def upsert(self, new_listings: dict[str, RawListing]) -> tuple[list[str], int]:
        rows = [self.build_row(key, raw) for key, raw in new_listings.items()]
        stored_keys: list[str] = []
        failed = 0
        for batch in chunked(rows, self.batch_size):
            try:
                await run_in_threadpool(self.store.insert_listings, batch)
            except sqlite3.Error as exc:
                failed += 1
                LOGGER.error(
                    json.dumps({"event": "upsert_batch_failed", "rows": len(batch), "error": str(exc)})
                )
                continue
            stored_keys.extend(row["dedup_key"] for row in batch)
        return stored_keys, failed

    async def fetch(self, keys: list[str]) -> tuple[list[JobListing], int]:
        listings: list[JobListing] = []
        failed = 0
        for batch in chunked(keys, self.batch_size):
            try:
                listings.extend(await run_in_threadpool(self.store.listings_by_dedup_keys, batch))
            except sqlite3.Error as exc:
                failed += 1
                LOGGER.error(
                    json.dumps({"event": "fetch_batch_failed", "keys": len(batch), "error": str(exc)})
                )
        return listings, failed

    async def ingest(
        self,
        new_listings: dict[str, RawListing],
        on_stored: Callable[[int], Awaitable[None]] | None = None,
    ) -> IngestResult:
        stored_keys, upsert_failures = await self.upsert(new_listings)
        if on_stored is not None:
            await on_stored(len(stored_keys))
        listings, fetch_failures = await self.fetch(stored_keys)
        LOGGER.info(
            json.dumps(
                {
                    "event": "ingest_complete",
                    "candidates": len(new_listings),
                    "stored": len(stored_keys),
                    "fetched": len(listings),
                }
            )
        )
        return IngestResult(
            listings=listings,
            inserted_keys=stored_keys,
            failed_batches=upsert_failures + fetch_failures,
        )
