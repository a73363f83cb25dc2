from __future__ import annotations

import json
import logging
from collections.abc import Callable

from fastapi.concurrency import run_in_threadpool

from jobmatch.aggregator import ProviderAggregator
from jobmatch.analyzer import ProfileAnalyzer
from jobmatch.cache import ResultCache
from jobmatch.catalog import CatalogSearcher, build_search_terms
from jobmatch.config import CATALOG_THRESHOLD
from jobmatch.errors import AuthorizationError
from jobmatch.hashing import build_fingerprint
from jobmatch.ingest import CatalogIngestor, Deduplicator
from jobmatch.models import (
    CVData,
    JobListing,
    Preferences,
    RecommendationBundle,
    SearchCriteria,
)
from jobmatch.progress import ProgressStreamer, searching_progress
from jobmatch.scoring import CompatibilityScorer
from jobmatch.usage import UsageGuard

LOGGER = logging.getLogger("jobmatch.pipeline")

PreferencesLoader = Callable[[str], Preferences | None]


class RecommendationPipeline:
    """One recommendation run, parameterized by a progress streamer.

    Every collaborator is injected; streaming and non-streaming callers share
    this code and differ only in the sink behind the streamer.
    """

    def __init__(
        self,
        *,
        analyzer: ProfileAnalyzer,
        cache: ResultCache,
        catalog: CatalogSearcher,
        aggregator: ProviderAggregator,
        deduplicator: Deduplicator,
        ingestor: CatalogIngestor,
        scorer: CompatibilityScorer,
        usage: UsageGuard,
        load_preferences: PreferencesLoader,
        catalog_threshold: int = CATALOG_THRESHOLD,
    ) -> None:
        self.analyzer = analyzer
        self.cache = cache
        self.catalog = catalog
        self.aggregator = aggregator
        self.deduplicator = deduplicator
        self.ingestor = ingestor
        self.scorer = scorer
        self.usage = usage
        self.load_preferences = load_preferences
        self.catalog_threshold = catalog_threshold

    async def run(
        self,
        user_id: str | None,
        cv: CVData,
        streamer: ProgressStreamer,
    ) -> RecommendationBundle | None:
        """Run to a terminal event; failures become an ``error`` event, never an exception."""
        try:
            return await self._run(user_id, cv, streamer)
        except Exception as exc:
            LOGGER.exception(
                json.dumps({"event": "pipeline_failed", "user_id": user_id, "error": str(exc)})
            )
            await streamer.fail(exc)
            return None

    async def _run(
        self,
        user_id: str | None,
        cv: CVData,
        streamer: ProgressStreamer,
    ) -> RecommendationBundle:
        await streamer.update("auth", "Checking authorization...", 0)
        if not user_id:
            raise AuthorizationError("Unauthorized")
        await self.usage.check(user_id)

        await streamer.update("auth", "Checking cache...", 3)
        preferences = await run_in_threadpool(self.load_preferences, user_id)
        fingerprint = build_fingerprint(cv, preferences)

        cached = await self.cache.get(user_id, fingerprint)
        if cached is not None:
            bundle = RecommendationBundle(
                recommendations=cached.recommendations,
                search_terms=cached.search_terms,
                cached=True,
            )
            await streamer.complete(
                "Loaded from cache",
                bundle,
                cached=True,
                jobs_found=len(cached.recommendations),
            )
            return bundle

        await streamer.update("analyzing", "Analyzing your CV...", 5)
        await streamer.update("analyzing", "Extracting skills and experience...", 10)
        criteria = await self.analyzer.analyze(cv, preferences)
        await self.usage.record(user_id)
        await streamer.update("analyzing", "CV analysis complete", 25)

        listings = await self.find_listings(criteria, cv, preferences, streamer)

        await streamer.update(
            "scoring", f"Scoring {len(listings)} jobs...", 80, jobs_found=len(listings)
        )
        scored = self.scorer.score(listings, criteria, preferences)
        await streamer.update(
            "scoring",
            f"Scored {len(scored.listings)} matches",
            95,
            jobs_found=len(listings),
            jobs_scored=len(scored.listings),
        )

        search_terms = criteria.search_terms_snapshot()
        try:
            await self.cache.put(user_id, fingerprint, scored.listings, search_terms)
        except Exception as exc:
            LOGGER.error(
                json.dumps({"event": "cache_save_failed", "user_id": user_id, "error": str(exc)})
            )

        bundle = RecommendationBundle(
            recommendations=scored.listings, search_terms=search_terms, cached=False
        )
        await streamer.complete(
            f"Found {len(scored.listings)} matching jobs",
            bundle,
            jobs_found=len(scored.listings),
        )
        return bundle

    async def find_listings(
        self,
        criteria: SearchCriteria,
        cv: CVData,
        preferences: Preferences | None,
        streamer: ProgressStreamer,
    ) -> list[JobListing]:
        await streamer.update("detecting", "Detecting user locations...", 25)
        terms = build_search_terms(criteria, preferences)
        listings = await self.catalog.search(terms)

        if len(listings) >= self.catalog_threshold:
            LOGGER.info(
                json.dumps(
                    {
                        "event": "external_search_skipped",
                        "catalog_listings": len(listings),
                        "threshold": self.catalog_threshold,
                    }
                )
            )
            await streamer.update(
                "searching",
                f"Using {len(listings)} cached jobs (skipping API calls)",
                65,
                jobs_found=len(listings),
            )
            return listings

        await streamer.update("detecting", "Analyzing location preferences...", 30)
        configs = await self.aggregator.resolve_configs(cv, preferences)
        await streamer.update("detecting", "Location detection complete", 35)

        total = len(self.aggregator.plan_queries(terms, configs))
        await streamer.update(
            "searching",
            f"Searching {total} job sources...",
            35,
            total_apis=total,
            completed_apis=0,
            jobs_found=len(listings),
        )

        async def on_search_progress(completed: int, total_calls: int, found: int) -> None:
            await streamer.update(
                "searching",
                f"Searching job boards ({completed}/{total_calls})...",
                searching_progress(completed, total_calls),
                total_apis=total_calls,
                completed_apis=completed,
                jobs_found=len(listings) + found,
            )

        aggregated = await self.aggregator.search(terms, configs, on_search_progress)
        fetched = aggregated.listings
        if not fetched:
            return listings

        await streamer.update(
            "inserting", f"Processing {len(fetched)} jobs...", 65, jobs_found=len(fetched)
        )
        fresh = await self.deduplicator.filter_new(fetched)
        if not fresh:
            return listings

        await streamer.update(
            "inserting",
            f"Storing {len(fresh)} new jobs...",
            70,
            jobs_found=len(fetched),
            jobs_inserted=len(fresh),
        )

        async def on_stored(stored: int) -> None:
            await streamer.update(
                "inserting",
                f"Inserted {stored} jobs",
                75,
                jobs_found=len(fetched),
                jobs_inserted=stored,
            )

        ingested = await self.ingestor.ingest(fresh, on_stored)
        merged = listings + ingested.listings
        await streamer.update(
            "inserting",
            "Processing complete",
            80,
            jobs_found=len(merged),
            jobs_inserted=len(ingested.inserted_keys),
        )
        return merged
