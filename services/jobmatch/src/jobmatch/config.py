from __future__ import annotations

import os
import tempfile

from pydantic import BaseModel, Field

DEFAULT_DB_PATH = os.path.join(tempfile.gettempdir(), "jobmatch", "jobmatch.sqlite3")

CATALOG_THRESHOLD = 50
SALARY_FLOOR_RATIO = 0.7
CACHE_TTL_HOURS = 24
RECENCY_WINDOW_DAYS = 14
CATALOG_RESULT_LIMIT = 500
MAX_RECOMMENDATIONS = 500
INGEST_BATCH_SIZE = 250
MAX_PROVIDER_CALLS = 6
PLACEHOLDER_LOCATION = "San Francisco, CA"
BATCH_QUERY_DELAY_SECONDS = 1.0
BACKFILL_BATCH_SIZE = 100


class ProviderCredentials(BaseModel):
    adzuna_app_id: str | None = None
    adzuna_app_key: str | None = None
    jsearch_api_key: str | None = None
    jooble_api_key: str | None = None


class Settings(BaseModel):
    database_path: str = DEFAULT_DB_PATH
    api_key: str | None = None
    catalog_threshold: int = Field(default=CATALOG_THRESHOLD, ge=0)
    salary_floor_ratio: float = Field(default=SALARY_FLOOR_RATIO, ge=0, le=1)
    cache_ttl_hours: float = Field(default=CACHE_TTL_HOURS, gt=0)
    monthly_limit: int | None = Field(default=None, ge=0)
    analyzer_url: str | None = None
    cron_secret: str | None = None
    refresh_delay_seconds: float = Field(default=BATCH_QUERY_DELAY_SECONDS, ge=0)
    providers: ProviderCredentials = Field(default_factory=ProviderCredentials)


def _env(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def load_settings(**overrides: object) -> Settings:
    """Build settings from the environment; explicit overrides win when not None."""
    values: dict[str, object] = {
        "database_path": _env("JOBMATCH_DB_PATH") or DEFAULT_DB_PATH,
        "api_key": _env("JOBMATCH_API_KEY"),
        "analyzer_url": _env("JOBMATCH_ANALYZER_URL"),
        "cron_secret": _env("JOBMATCH_CRON_SECRET"),
        "providers": ProviderCredentials(
            adzuna_app_id=_env("ADZUNA_APP_ID"),
            adzuna_app_key=_env("ADZUNA_APP_KEY"),
            jsearch_api_key=_env("JSEARCH_API_KEY"),
            jooble_api_key=_env("JOOBLE_API_KEY"),
        ),
    }
    numeric_env = {
        "catalog_threshold": "JOBMATCH_CATALOG_THRESHOLD",
        "salary_floor_ratio": "JOBMATCH_SALARY_FLOOR_RATIO",
        "cache_ttl_hours": "JOBMATCH_CACHE_TTL_HOURS",
        "monthly_limit": "JOBMATCH_MONTHLY_LIMIT",
    }
    for field_name, env_name in numeric_env.items():
        raw = _env(env_name)
        if raw is not None:
            values[field_name] = raw

    values.update({key: value for key, value in overrides.items() if value is not None})
    return Settings(**values)
