from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from common.utils import now_utc
from fastapi.concurrency import run_in_threadpool

from jobmatch.config import CATALOG_RESULT_LIMIT, RECENCY_WINDOW_DAYS
from jobmatch.models import JobListing, Preferences, SearchCriteria
from jobmatch.store import CatalogStore

LOGGER = logging.getLogger("jobmatch.catalog")

MAX_SEARCH_TERMS = 4


def build_search_terms(criteria: SearchCriteria, preferences: Preferences | None) -> list[str]:
    terms = list(criteria.search_queries[:3])
    if preferences:
        for role in preferences.target_roles[:2]:
            role_lower = role.lower()
            if not any(role_lower in term.lower() for term in terms):
                terms.append(role)
    return terms[:MAX_SEARCH_TERMS]


class CatalogSearcher:
    def __init__(
        self,
        store: CatalogStore,
        *,
        window_days: int = RECENCY_WINDOW_DAYS,
        limit: int = CATALOG_RESULT_LIMIT,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.store = store
        self.window = timedelta(days=window_days)
        self.limit = limit
        self._clock = clock

    async def search(self, terms: list[str]) -> list[JobListing]:
        posted_since = self._clock() - self.window
        listings = await run_in_threadpool(
            self.store.search_listings,
            terms[:MAX_SEARCH_TERMS],
            posted_since=posted_since,
            limit=self.limit,
        )
        LOGGER.info(
            json.dumps(
                {
                    "event": "catalog_search",
                    "terms": terms[:MAX_SEARCH_TERMS],
                    "found": len(listings),
                }
            )
        )
        return listings
