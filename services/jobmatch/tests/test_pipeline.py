from __future__ import annotations

from datetime import timedelta

import pytest
from fakes import NOW, CountingProvider, StaticAnalyzer, StaticResolver
from jobmatch.config import Settings
from jobmatch.locations import LocationResolution
from jobmatch.main import build_pipeline
from jobmatch.models import CVData, PreferencesPayload, ProgressEvent, SearchCriteria
from jobmatch.progress import ProgressStreamer
from jobmatch.store import SqliteCatalogStore

pytestmark = pytest.mark.integration


class Recorder:
    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    async def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)


def seed_catalog(store: SqliteCatalogStore, count: int) -> None:
    store.insert_listings(
        [
            {
                "title": f"Frontend Developer {index}",
                "company": f"Company {index}",
                "source": "adzuna",
                "dedup_key": f"seed-{index}",
                "posted_at": NOW - timedelta(hours=index),
            }
            for index in range(count)
        ]
    )


def make_pipeline(store, criteria, provider, *, monthly_limit=None, resolver=None):
    settings = Settings(database_path=str(store.database_path), monthly_limit=monthly_limit)
    return build_pipeline(
        settings,
        store,
        analyzer=StaticAnalyzer(criteria),
        provider=provider,
        resolver=resolver or StaticResolver(LocationResolution(primary_country="pl")),
    )


async def run(pipeline, user_id: str | None, cv: CVData) -> tuple[object, Recorder]:
    recorder = Recorder()
    bundle = await pipeline.run(user_id, cv, ProgressStreamer(recorder))
    return bundle, recorder


def assert_well_formed(events: list[ProgressEvent]) -> None:
    progress = [event.progress for event in events]
    assert progress == sorted(progress)
    terminal = [event for event in events if event.stage in ("complete", "error")]
    assert len(terminal) == 1
    assert events[-1] is terminal[0]


@pytest.mark.asyncio
async def test_fetches_ingests_and_scores_when_catalog_is_thin(
    store: SqliteCatalogStore, criteria: SearchCriteria, cv: CVData, make_raw
) -> None:
    provider = CountingProvider(
        listings={
            "Frontend Developer": [
                make_raw("Junior Frontend Developer", company="Acme"),
                make_raw("Senior Frontend Engineer", company="Globex"),
            ]
        }
    )
    pipeline = make_pipeline(store, criteria, provider)

    bundle, recorder = await run(pipeline, "user-1", cv)

    assert bundle is not None and bundle.cached is False
    assert [item.title for item in bundle.recommendations] == ["Junior Frontend Developer"]
    assert bundle.search_terms["queries"] == criteria.search_queries
    assert len(provider.calls) == 6
    assert store.existing_dedup_keys(["junior-frontend-developer-acme-warsaw"])
    stages = [event.stage for event in recorder.events]
    assert stages[0] == "auth" and stages[-1] == "complete"
    assert {"detecting", "searching", "inserting", "scoring"} <= set(stages)
    assert_well_formed(recorder.events)


@pytest.mark.asyncio
async def test_second_request_is_served_from_cache_without_provider_calls(
    store: SqliteCatalogStore, criteria: SearchCriteria, cv: CVData, make_raw
) -> None:
    provider = CountingProvider(listings={"Frontend Developer": [make_raw("Frontend Developer")]})
    pipeline = make_pipeline(store, criteria, provider)

    first, _ = await run(pipeline, "user-1", cv)
    calls_after_first = len(provider.calls)
    second, recorder = await run(pipeline, "user-1", cv)

    assert second is not None and second.cached is True
    assert len(provider.calls) == calls_after_first
    assert [item.id for item in second.recommendations] == [item.id for item in first.recommendations]
    assert [event.stage for event in recorder.events] == ["auth", "auth", "complete"]
    assert recorder.events[-1].details.cached is True


@pytest.mark.asyncio
async def test_preference_edit_busts_the_cache(
    store: SqliteCatalogStore, criteria: SearchCriteria, cv: CVData
) -> None:
    provider = CountingProvider()
    pipeline = make_pipeline(store, criteria, provider)

    await run(pipeline, "user-1", cv)
    store.upsert_preferences("user-1", PreferencesPayload(remote_preference="remote"))
    bundle, _ = await run(pipeline, "user-1", cv)

    assert bundle is not None and bundle.cached is False


@pytest.mark.asyncio
async def test_rich_catalog_skips_external_search(
    store: SqliteCatalogStore, criteria: SearchCriteria, cv: CVData
) -> None:
    seed_catalog(store, 50)
    provider = CountingProvider()
    pipeline = make_pipeline(store, criteria, provider)
    pipeline.catalog._clock = lambda: NOW

    bundle, recorder = await run(pipeline, "user-1", cv)

    assert provider.calls == []
    assert bundle is not None and len(bundle.recommendations) == 50
    skip = [event for event in recorder.events if event.stage == "searching"]
    assert skip[0].progress == 65
    assert "skipping API calls" in skip[0].message
    assert_well_formed(recorder.events)


@pytest.mark.asyncio
async def test_missing_user_is_rejected_before_any_work(
    store: SqliteCatalogStore, criteria: SearchCriteria, cv: CVData
) -> None:
    provider = CountingProvider()
    pipeline = make_pipeline(store, criteria, provider)
    streamer = ProgressStreamer()

    bundle = await pipeline.run(None, cv, streamer)

    assert bundle is None
    assert pipeline.analyzer.calls == 0
    assert provider.calls == []
    assert streamer.failure is not None and streamer.failure.reason == "unauthorized"


@pytest.mark.asyncio
async def test_usage_limit_denies_after_quota(
    store: SqliteCatalogStore, criteria: SearchCriteria, cv: CVData
) -> None:
    pipeline = make_pipeline(store, criteria, CountingProvider(), monthly_limit=1)

    first, _ = await run(pipeline, "user-1", cv)
    second, recorder = await run(pipeline, "user-1", cv)

    assert first is not None
    assert second is None
    assert recorder.events[-1].stage == "error"
    assert recorder.events[-1].message == "You have reached your monthly AI usage limit"
    assert_well_formed(recorder.events)


@pytest.mark.asyncio
async def test_unexpected_failure_becomes_single_error_event(
    store: SqliteCatalogStore, criteria: SearchCriteria, cv: CVData
) -> None:
    class BrokenAnalyzer:
        async def analyze(self, cv, preferences):
            raise ValueError("analyzer exploded")

    pipeline = make_pipeline(store, criteria, CountingProvider())
    pipeline.analyzer = BrokenAnalyzer()

    bundle, recorder = await run(pipeline, "user-1", cv)

    assert bundle is None
    assert recorder.events[-1].error == "analyzer exploded"
    assert recorder.events[-1].progress == 10
    assert_well_formed(recorder.events)


@pytest.mark.asyncio
async def test_provider_failures_do_not_fail_the_run(
    store: SqliteCatalogStore, criteria: SearchCriteria, cv: CVData, make_raw
) -> None:
    provider = CountingProvider(
        listings={"React Developer": [make_raw("React Developer", company="Initech")]},
        failing={"Frontend Developer:Warsaw, Poland", "Frontend Developer:remote"},
    )
    pipeline = make_pipeline(store, criteria, provider)

    bundle, recorder = await run(pipeline, "user-1", cv)

    assert bundle is not None
    assert [item.company for item in bundle.recommendations] == ["Initech"]
    assert recorder.events[-1].stage == "complete"
