from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse

from jobmatch.aggregator import ProviderAggregator
from jobmatch.analyzer import ProfileAnalyzer, RemoteProfileAnalyzer, RuleBasedProfileAnalyzer
from jobmatch.cache import ResultCache
from jobmatch.catalog import CatalogSearcher
from jobmatch.config import Settings, load_settings
from jobmatch.errors import AuthorizationError
from jobmatch.ingest import CatalogIngestor, Deduplicator
from jobmatch.locations import KeywordLocationResolver, LocationResolver
from jobmatch.models import (
    JobListing,
    Preferences,
    PreferencesPayload,
    RecommendationBundle,
    RecommendRequest,
)
from jobmatch.pipeline import RecommendationPipeline
from jobmatch.progress import ProgressStreamer, QueueSink
from jobmatch.providers import JobProvider, ProviderSuite
from jobmatch.refresh import CatalogRefresher, backfill_work_types
from jobmatch.scoring import CompatibilityScorer
from jobmatch.store import SqliteCatalogStore
from jobmatch.usage import MonthlyUsageGuard

LOGGER = logging.getLogger("jobmatch.api")

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


def build_pipeline(
    settings: Settings,
    store: SqliteCatalogStore,
    *,
    analyzer: ProfileAnalyzer | None = None,
    provider: JobProvider | None = None,
    resolver: LocationResolver | None = None,
) -> RecommendationPipeline:
    if analyzer is None:
        if settings.analyzer_url:
            analyzer = RemoteProfileAnalyzer(settings.analyzer_url)
        else:
            analyzer = RuleBasedProfileAnalyzer()
    return RecommendationPipeline(
        analyzer=analyzer,
        cache=ResultCache(store, ttl_hours=settings.cache_ttl_hours),
        catalog=CatalogSearcher(store),
        aggregator=ProviderAggregator(
            provider or ProviderSuite.from_credentials(settings.providers),
            resolver or KeywordLocationResolver(),
        ),
        deduplicator=Deduplicator(store),
        ingestor=CatalogIngestor(store),
        scorer=CompatibilityScorer(salary_floor_ratio=settings.salary_floor_ratio),
        usage=MonthlyUsageGuard(store, monthly_limit=settings.monthly_limit),
        load_preferences=store.get_preferences,
        catalog_threshold=settings.catalog_threshold,
    )


def create_app(
    *,
    database_path: str | None = None,
    api_key: str | None = None,
    catalog_threshold: int | None = None,
    monthly_limit: int | None = None,
    cron_secret: str | None = None,
    analyzer: ProfileAnalyzer | None = None,
    provider: JobProvider | None = None,
    resolver: LocationResolver | None = None,
    refresh_delay_seconds: float | None = None,
) -> FastAPI:
    settings = load_settings(
        database_path=database_path,
        api_key=api_key,
        catalog_threshold=catalog_threshold,
        monthly_limit=monthly_limit,
        cron_secret=cron_secret,
        refresh_delay_seconds=refresh_delay_seconds,
    )
    store = SqliteCatalogStore(settings.database_path)
    provider = provider or ProviderSuite.from_credentials(settings.providers)
    pipeline = build_pipeline(
        settings, store, analyzer=analyzer, provider=provider, resolver=resolver
    )
    refresher = CatalogRefresher(
        store, provider, delay_seconds=settings.refresh_delay_seconds
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(store.connect)
        app.state.settings = settings
        app.state.store = store
        app.state.pipeline = pipeline
        app.state.refresher = refresher
        app.state.runs = set()
        try:
            yield
        finally:
            if app.state.runs:
                await asyncio.gather(*app.state.runs, return_exceptions=True)
            await run_in_threadpool(store.close)

    app = FastAPI(title="Jobmatch Recommendations", version="0.1.0", lifespan=lifespan)

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            LOGGER.exception(
                json.dumps(
                    {
                        "event": "request_complete",
                        "request_id": request_id,
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": 500,
                        "duration_ms": round(duration_ms, 3),
                        "error": str(exc),
                    }
                )
            )
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
                headers={"x-request-id": request_id},
            )

        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["x-request-id"] = request_id
        LOGGER.info(
            json.dumps(
                {
                    "event": "request_complete",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 3),
                    "source_ip": request.client.host if request.client else None,
                }
            )
        )
        return response

    def api_key_valid(request: Request) -> bool:
        expected = request.app.state.settings.api_key
        if not expected:
            return True
        provided = request.headers.get("x-api-key", "")
        return secrets.compare_digest(provided, expected)

    def caller_id(request: Request) -> str | None:
        if not api_key_valid(request):
            return None
        return request.headers.get("x-user-id", "").strip() or None

    def require_api_key(request: Request) -> None:
        if not api_key_valid(request):
            raise HTTPException(status_code=401, detail="Unauthorized")

    def require_cron_secret(request: Request) -> None:
        expected = request.app.state.settings.cron_secret
        provided = request.headers.get("authorization", "")
        if not expected or not secrets.compare_digest(provided, f"Bearer {expected}"):
            raise HTTPException(status_code=401, detail="Unauthorized")

    def start_run(request: Request, payload: RecommendRequest, streamer: ProgressStreamer):
        task = asyncio.create_task(
            request.app.state.pipeline.run(caller_id(request), payload.cv_data, streamer)
        )
        runs: set[asyncio.Task] = request.app.state.runs
        runs.add(task)
        task.add_done_callback(runs.discard)
        return task

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "jobmatch"}

    @app.post("/jobs/recommend")
    async def recommend_stream(payload: RecommendRequest, request: Request) -> StreamingResponse:
        sink = QueueSink()
        start_run(request, payload, ProgressStreamer(sink))
        return StreamingResponse(
            sink.stream(), media_type="text/event-stream", headers=SSE_HEADERS
        )

    @app.post("/jobs/recommendations", response_model=RecommendationBundle)
    async def recommend(payload: RecommendRequest, request: Request) -> RecommendationBundle:
        streamer = ProgressStreamer()
        bundle = await start_run(request, payload, streamer)
        if bundle is not None:
            return bundle

        failure = streamer.failure
        if isinstance(failure, AuthorizationError):
            status_code = 401 if failure.reason == "unauthorized" else 403
            raise HTTPException(status_code=status_code, detail=str(failure))
        raise HTTPException(status_code=500, detail=str(failure) or "Recommendation failed")

    @app.put("/preferences/{user_id}", response_model=Preferences)
    async def upsert_preferences(
        user_id: str, payload: PreferencesPayload, request: Request
    ) -> Preferences:
        require_api_key(request)
        return await run_in_threadpool(
            request.app.state.store.upsert_preferences, user_id, payload
        )

    @app.get("/preferences/{user_id}", response_model=Preferences)
    async def get_preferences(user_id: str, request: Request) -> Preferences:
        require_api_key(request)
        preferences = await run_in_threadpool(request.app.state.store.get_preferences, user_id)
        if preferences is None:
            raise HTTPException(status_code=404, detail="Unknown user_id")
        return preferences

    @app.get("/listings", response_model=list[JobListing])
    async def list_listings(
        request: Request,
        limit: int = Query(default=100, ge=1, le=500),
    ) -> list[JobListing]:
        require_api_key(request)
        return await run_in_threadpool(request.app.state.store.list_listings, limit)

    @app.post("/jobs/refresh")
    async def refresh_catalog(request: Request) -> JSONResponse:
        require_cron_secret(request)
        try:
            result = await request.app.state.refresher.run()
        except Exception as exc:
            LOGGER.exception(json.dumps({"event": "refresh_failed", "error": str(exc)}))
            return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})
        return JSONResponse(content=result.to_dict())

    @app.post("/listings/backfill-work-types")
    async def backfill_listing_work_types(
        request: Request,
        dry_run: bool = Query(default=False),
    ) -> dict[str, object]:
        require_cron_secret(request)
        stats = await run_in_threadpool(
            backfill_work_types, request.app.state.store, dry_run=dry_run
        )
        return {"dryRun": dry_run, **stats.to_dict()}

    return app


app = create_app()
