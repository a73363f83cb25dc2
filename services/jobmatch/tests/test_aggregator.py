from __future__ import annotations

import pytest
from fakes import CountingProvider, StaticResolver
from jobmatch.aggregator import ProviderAggregator, build_search_configs, collect_locations
from jobmatch.locations import LocationResolution
from jobmatch.models import CVData, Preferences, SearchConfig

pytestmark = pytest.mark.unit


def cv_at(location: str | None) -> CVData:
    return CVData.model_validate({"personal_info": {"location": location}})


def test_collect_locations_skips_placeholder_and_short_values() -> None:
    preferences = Preferences(user_id="u", target_locations=["Berlin", "NY", "San Francisco, CA"])
    assert collect_locations(cv_at("Warsaw"), preferences) == ["Berlin", "Warsaw"]
    assert collect_locations(cv_at("San Francisco, CA"), None) == []


def test_configs_add_remote_searches_for_remote_friendly_users() -> None:
    preferences = Preferences(
        user_id="u", target_locations=["Warsaw", "Kraków", "Gdańsk"], remote_preference="any"
    )
    resolution = LocationResolution(
        location_countries={"Warsaw": "pl", "Kraków": None}, primary_country="pl"
    )

    configs = build_search_configs(cv_at("Berlin"), preferences, resolution)

    assert configs == [
        SearchConfig(location="Warsaw", country="pl"),
        SearchConfig(location="Kraków", country="pl"),
        SearchConfig(location="remote", country="pl"),
        SearchConfig(location="remote", country="us"),
    ]


def test_configs_skip_remote_for_onsite_users_and_dedupe() -> None:
    preferences = Preferences(
        user_id="u", target_locations=["Austin"], remote_preference="onsite"
    )
    resolution = LocationResolution(location_countries={"Austin": "us"}, primary_country="us")

    configs = build_search_configs(cv_at("Austin"), preferences, resolution)

    assert configs == [SearchConfig(location="Austin", country="us")]


def test_configs_without_preferences_search_remote_us_only_once() -> None:
    resolution = LocationResolution(primary_country="us")
    configs = build_search_configs(cv_at(None), None, resolution)
    assert configs == [SearchConfig(location="remote", country="us")]


@pytest.mark.asyncio
async def test_resolver_failure_falls_back_to_empty_mapping() -> None:
    aggregator = ProviderAggregator(CountingProvider(), StaticResolver(fail=True))

    configs = await aggregator.resolve_configs(cv_at("Warsaw"), None)

    assert configs == [
        SearchConfig(location="Warsaw", country=None),
        SearchConfig(location="remote", country="us"),
    ]


def test_plan_crosses_two_terms_with_three_configs() -> None:
    aggregator = ProviderAggregator(CountingProvider(), StaticResolver())
    configs = [SearchConfig(location=f"city-{index}") for index in range(5)]

    queries = aggregator.plan_queries(["a", "b", "c"], configs)

    assert len(queries) == 6
    assert {query.keywords for query in queries} == {"a", "b"}
    assert {query.location for query in queries} == {"city-0", "city-1", "city-2"}


@pytest.mark.asyncio
async def test_search_isolates_failures_and_reports_progress(make_raw) -> None:
    provider = CountingProvider(
        listings={"python": [make_raw("Python Dev")], "golang": [make_raw("Go Dev")]},
        failing={"golang:Berlin"},
    )
    aggregator = ProviderAggregator(provider, StaticResolver())
    configs = [SearchConfig(location="Warsaw"), SearchConfig(location="Berlin")]
    progress: list[tuple[int, int]] = []

    async def on_progress(completed: int, total: int, found: int) -> None:
        progress.append((completed, total))

    result = await aggregator.search(["python", "golang"], configs, on_progress)

    assert result.total_calls == 4
    assert len(provider.calls) == 4
    assert len(result.listings) == 3
    assert [failure.query.location for failure in result.failures] == ["Berlin"]
    assert sorted(progress) == [(1, 4), (2, 4), (3, 4), (4, 4)]


@pytest.mark.asyncio
async def test_search_with_no_configs_makes_no_calls() -> None:
    provider = CountingProvider()
    result = await ProviderAggregator(provider, StaticResolver()).search(["python"], [])
    assert result.total_calls == 0
    assert provider.calls == []
