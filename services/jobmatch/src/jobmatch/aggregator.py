from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from jobmatch.config import MAX_PROVIDER_CALLS, PLACEHOLDER_LOCATION
from jobmatch.locations import LocationResolution, LocationResolver
from jobmatch.models import CVData, Preferences, ProviderQuery, RawListing, SearchConfig
from jobmatch.providers import JobProvider

LOGGER = logging.getLogger("jobmatch.aggregator")

MAX_QUERY_TERMS = 2
MAX_CONFIGS = 3
MAX_PREFERRED_LOCATIONS = 2

ProgressCallback = Callable[[int, int, int], Awaitable[None]]


@dataclass
class ProviderFailure:
    query: ProviderQuery
    error: str


@dataclass
class AggregationResult:
    listings: list[RawListing] = field(default_factory=list)
    failures: list[ProviderFailure] = field(default_factory=list)
    total_calls: int = 0


def _usable_location(value: str | None) -> str | None:
    cleaned = (value or "").strip()
    if len(cleaned) < 3 or cleaned == PLACEHOLDER_LOCATION:
        return None
    return cleaned


def preferred_locations(preferences: Preferences | None) -> list[str]:
    if preferences is None:
        return []
    return [loc for loc in map(_usable_location, preferences.target_locations) if loc]


def collect_locations(cv: CVData, preferences: Preferences | None) -> list[str]:
    locations = preferred_locations(preferences)
    cv_location = _usable_location(cv.personal_info.location)
    if cv_location:
        locations.append(cv_location)
    return locations


def build_search_configs(
    cv: CVData,
    preferences: Preferences | None,
    resolution: LocationResolution,
) -> list[SearchConfig]:
    countries = resolution.location_countries
    primary = resolution.primary_country
    configs: list[SearchConfig] = []

    for location in preferred_locations(preferences)[:MAX_PREFERRED_LOCATIONS]:
        configs.append(SearchConfig(location=location, country=countries.get(location) or primary))

    cv_location = _usable_location(cv.personal_info.location)
    if cv_location and len(configs) < 2:
        configs.append(
            SearchConfig(location=cv_location, country=countries.get(cv_location) or primary)
        )

    if preferences is None or preferences.remote_preference in ("any", "remote"):
        if primary:
            configs.append(SearchConfig(location="remote", country=primary))
        if primary != "us":
            configs.append(SearchConfig(location="remote", country="us"))

    unique: dict[str, SearchConfig] = {}
    for config in configs:
        unique.setdefault(config.key, config)
    return list(unique.values())


class ProviderAggregator:
    """Fans search queries out to the provider layer with bounded concurrency.

    Each call is isolated: a failing call is recorded in the result's
    ``failures`` and never cancels its siblings.
    """

    def __init__(
        self,
        provider: JobProvider,
        resolver: LocationResolver,
        *,
        max_calls: int = MAX_PROVIDER_CALLS,
    ) -> None:
        self.provider = provider
        self.resolver = resolver
        self.max_calls = max_calls

    async def resolve_configs(
        self, cv: CVData, preferences: Preferences | None
    ) -> list[SearchConfig]:
        locations = collect_locations(cv, preferences)
        resolution = LocationResolution()
        if locations:
            try:
                resolution = await self.resolver.resolve(locations)
            except Exception as exc:
                LOGGER.warning(
                    json.dumps(
                        {"event": "location_resolution_failed", "locations": locations, "error": str(exc)}
                    )
                )
                resolution = LocationResolution()
        LOGGER.info(
            json.dumps(
                {
                    "event": "locations_resolved",
                    "locations": locations,
                    "primary_country": resolution.primary_country,
                }
            )
        )
        return build_search_configs(cv, preferences, resolution)

    def plan_queries(self, terms: list[str], configs: list[SearchConfig]) -> list[ProviderQuery]:
        queries = [
            ProviderQuery(keywords=term, location=config.location, country=config.country)
            for term in terms[:MAX_QUERY_TERMS]
            for config in configs[:MAX_CONFIGS]
        ]
        return queries[: self.max_calls]

    async def search(
        self,
        terms: list[str],
        configs: list[SearchConfig],
        on_progress: ProgressCallback | None = None,
    ) -> AggregationResult:
        queries = self.plan_queries(terms, configs)
        result = AggregationResult(total_calls=len(queries))
        if not queries:
            return result

        semaphore = asyncio.Semaphore(self.max_calls)
        completed = 0

        async def run(query: ProviderQuery) -> None:
            nonlocal completed
            try:
                async with semaphore:
                    found = await self.provider.search(query)
            except Exception as exc:
                LOGGER.warning(
                    json.dumps(
                        {
                            "event": "provider_search_failed",
                            "keywords": query.keywords,
                            "location": query.location,
                            "country": query.country,
                            "error": str(exc),
                        }
                    )
                )
                result.failures.append(ProviderFailure(query=query, error=str(exc)))
            else:
                result.listings.extend(found)
            completed += 1
            if on_progress is not None:
                await on_progress(completed, result.total_calls, len(result.listings))

        await asyncio.gather(*(run(query) for query in queries))
        LOGGER.info(
            json.dumps(
                {
                    "event": "provider_search_complete",
                    "calls": result.total_calls,
                    "failures": len(result.failures),
                    "listings": len(result.listings),
                }
            )
        )
        return result
