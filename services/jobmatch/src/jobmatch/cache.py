from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any

from common.utils import now_utc
from fastapi.concurrency import run_in_threadpool

from jobmatch.config import CACHE_TTL_HOURS
from jobmatch.models import CacheEntry, ScoredListing
from jobmatch.store import CatalogStore

LOGGER = logging.getLogger("jobmatch.cache")


class ResultCache:
    """Recommendation bundles keyed by (user, fingerprint) with a fixed TTL.

    Entries are never invalidated explicitly: a preference edit changes the
    fingerprint, so the stale entry is simply never asked for again.
    """

    def __init__(
        self,
        store: CatalogStore,
        *,
        ttl_hours: float = CACHE_TTL_HOURS,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.store = store
        self.ttl = timedelta(hours=ttl_hours)
        self._clock = clock

    async def get(self, user_id: str, fingerprint: str) -> CacheEntry | None:
        created_after = self._clock() - self.ttl
        entry = await run_in_threadpool(
            self.store.get_cache_entry,
            user_id,
            fingerprint,
            created_after=created_after,
        )
        LOGGER.info(
            json.dumps(
                {
                    "event": "cache_lookup",
                    "user_id": user_id,
                    "fingerprint": fingerprint[:8],
                    "hit": entry is not None,
                }
            )
        )
        return entry

    async def put(
        self,
        user_id: str,
        fingerprint: str,
        recommendations: Sequence[ScoredListing],
        search_terms: dict[str, Any],
    ) -> CacheEntry:
        entry = CacheEntry(
            user_id=user_id,
            fingerprint=fingerprint,
            recommendations=list(recommendations),
            search_terms=search_terms,
            created_at=self._clock(),
        )
        await run_in_threadpool(self.store.upsert_cache_entry, entry)
        return entry
