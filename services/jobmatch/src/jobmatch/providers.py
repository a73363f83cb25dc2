from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Protocol, runtime_checkable

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from jobmatch.config import ProviderCredentials
from jobmatch.errors import ProviderError
from jobmatch.locations import detect_country
from jobmatch.models import ProviderQuery, RawListing

LOGGER = logging.getLogger("jobmatch.providers")

RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})
EARLY_EXIT_THRESHOLD = 100
INTER_PROVIDER_DELAY_SECONDS = 0.5

CURRENCY_BY_COUNTRY = {
    "us": "USD",
    "ca": "CAD",
    "gb": "GBP",
    "uk": "GBP",
    "au": "AUD",
    "nz": "NZD",
    "pl": "PLN",
    "de": "EUR",
    "fr": "EUR",
    "it": "EUR",
    "es": "EUR",
    "nl": "EUR",
    "be": "EUR",
    "at": "EUR",
    "ch": "CHF",
    "br": "BRL",
    "mx": "MXN",
    "in": "INR",
    "sg": "SGD",
    "za": "ZAR",
}


class JobProvider(Protocol):
    async def search(self, query: ProviderQuery) -> list[RawListing]: ...


@runtime_checkable
class JobAdapter(JobProvider, Protocol):
    name: str

    def is_available(self) -> bool: ...


class RetryableStatusError(ProviderError):
    pass


def currency_for(country: str) -> str:
    return CURRENCY_BY_COUNTRY.get(country, "USD")


def normalize_employment_type(value: str | None) -> str | None:
    if not value:
        return None
    lowered = value.lower().strip()
    if "full" in lowered:
        return "full-time"
    if "part" in lowered:
        return "part-time"
    if "contract" in lowered:
        return "contract"
    if "intern" in lowered:
        return "internship"
    if "temp" in lowered:
        return "temporary"
    return lowered


def parse_salary_text(salary: str | None) -> tuple[float | None, float | None]:
    if not salary:
        return None, None
    numbers = [int(chunk.replace(",", "")) for chunk in re.findall(r"\d[\d,]*", salary)]
    if not numbers:
        return None, None
    return float(numbers[0]), float(numbers[1]) if len(numbers) > 1 else None


@retry(
    wait=wait_exponential(multiplier=0.5, max=4),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type((RetryableStatusError, httpx.TransportError)),
    reraise=True,
)
async def fetch_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    **kwargs: Any,
) -> Any:
    response = await client.request(method, url, **kwargs)
    if response.status_code in RETRYABLE_STATUSES:
        raise RetryableStatusError(
            provider,
            f"HTTP {response.status_code}",
            status_code=response.status_code,
        )
    if response.status_code >= 400:
        raise ProviderError(
            provider,
            f"HTTP {response.status_code}: {response.text[:200]}",
            status_code=response.status_code,
        )
    return response.json()


class HttpAdapter:
    name = "http"

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.transport = transport

    def is_available(self) -> bool:
        return True

    def client(self, **kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport, **kwargs)


class AdzunaAdapter(HttpAdapter):
    name = "adzuna"
    base_url = "https://api.adzuna.com/v1/api/jobs"

    def __init__(self, app_id: str | None, app_key: str | None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.app_id = app_id
        self.app_key = app_key

    def is_available(self) -> bool:
        return bool(self.app_id and self.app_key)

    async def search(self, query: ProviderQuery) -> list[RawListing]:
        country = query.country or detect_country(query.location or "")
        if not country:
            LOGGER.info(json.dumps({"event": "provider_skipped", "provider": self.name}))
            return []
        if country == "uk":
            country = "gb"

        params = {
            "app_id": self.app_id,
            "app_key": self.app_key,
            "what": query.keywords,
            "results_per_page": str(query.results_per_page),
        }
        if query.location and query.location.lower() != "remote":
            params["where"] = query.location

        async with self.client() as client:
            data = await fetch_json(
                client,
                "GET",
                f"{self.base_url}/{country}/search/{query.page}",
                provider=self.name,
                params=params,
            )

        listings = []
        for item in data.get("results") or []:
            contract_time = item.get("contract_time")
            if contract_time == "full_time":
                employment_type = "full-time"
            elif contract_time == "part_time":
                employment_type = "part-time"
            else:
                employment_type = item.get("contract_type")
            listings.append(
                RawListing(
                    title=item.get("title") or "",
                    company=(item.get("company") or {}).get("display_name") or "Unknown",
                    location=(item.get("location") or {}).get("display_name"),
                    description=item.get("description"),
                    url=item.get("redirect_url") or item.get("adref") or "",
                    salary_min=item.get("salary_min"),
                    salary_max=item.get("salary_max"),
                    salary_currency=currency_for(country),
                    posted_at=item.get("created"),
                    source=self.name,
                    employment_type=employment_type,
                    external_id=str(item["id"]) if item.get("id") is not None else None,
                )
            )
        return listings


class JSearchAdapter(HttpAdapter):
    name = "jsearch"
    url = "https://api.openwebninja.com/jsearch/search"

    def __init__(self, api_key: str | None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def search(self, query: ProviderQuery) -> list[RawListing]:
        search_query = f"{query.keywords} in {query.location}" if query.location else query.keywords
        params = {"query": search_query, "page": str(query.page), "num_pages": "10"}
        async with self.client(headers={"x-api-key": self.api_key or ""}) as client:
            data = await fetch_json(client, "GET", self.url, provider=self.name, params=params)

        listings = []
        for item in data.get("data") or []:
            location_parts = [item.get("job_city"), item.get("job_state"), item.get("job_country")]
            required = (item.get("job_required_experience") or {}).get(
                "required_experience_in_months"
            )
            experience_level = None
            if required:
                experience_level = "junior" if required <= 24 else "mid" if required <= 60 else "senior"
            listings.append(
                RawListing(
                    title=item.get("job_title") or "",
                    company=item.get("employer_name") or "Unknown",
                    location=", ".join(part for part in location_parts if part) or None,
                    description=item.get("job_description"),
                    url=item.get("job_apply_link") or item.get("job_google_link") or "",
                    salary_min=item.get("job_min_salary"),
                    salary_max=item.get("job_max_salary"),
                    salary_currency=item.get("job_salary_currency") or "USD",
                    posted_at=item.get("job_posted_at_datetime_utc"),
                    source=self.name,
                    company_logo_url=item.get("employer_logo"),
                    employment_type=item.get("job_employment_type"),
                    experience_level=experience_level,
                    is_remote=item.get("job_is_remote"),
                    apply_link=item.get("job_apply_link"),
                )
            )
        return listings


class JoobleAdapter(HttpAdapter):
    name = "jooble"

    def __init__(self, api_key: str | None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def search(self, query: ProviderQuery) -> list[RawListing]:
        country = query.country or detect_country(query.location or "")
        if not country:
            LOGGER.info(json.dumps({"event": "provider_skipped", "provider": self.name}))
            return []

        body = {
            "keywords": query.keywords,
            "location": query.location or "",
            "page": str(query.page),
        }
        async with self.client() as client:
            data = await fetch_json(
                client,
                "POST",
                f"https://{country}.jooble.org/api/{self.api_key}",
                provider=self.name,
                json=body,
            )

        listings = []
        for item in data.get("jobs") or []:
            salary_min, salary_max = parse_salary_text(item.get("salary"))
            listings.append(
                RawListing(
                    title=item.get("title") or "",
                    company=item.get("company") or "Unknown",
                    location=item.get("location"),
                    description=item.get("snippet"),
                    url=item.get("link") or "",
                    salary_min=salary_min,
                    salary_max=salary_max,
                    salary_currency=currency_for(country),
                    posted_at=item.get("updated"),
                    source=self.name,
                    employment_type=normalize_employment_type(item.get("type")),
                    external_id=str(item["id"]) if item.get("id") is not None else None,
                )
            )
        return listings


class ProviderSuite:
    """Queries every available adapter in priority order for one search.

    Adapters run one after another with a short pause to stay under rate
    limits. Jooble is skipped once enough results are in hand.
    """

    def __init__(
        self,
        adapters: list[JobAdapter],
        *,
        delay_seconds: float = INTER_PROVIDER_DELAY_SECONDS,
        early_exit_threshold: int = EARLY_EXIT_THRESHOLD,
    ) -> None:
        self.adapters = adapters
        self.delay_seconds = delay_seconds
        self.early_exit_threshold = early_exit_threshold

    @classmethod
    def from_credentials(cls, credentials: ProviderCredentials) -> ProviderSuite:
        return cls(
            [
                AdzunaAdapter(credentials.adzuna_app_id, credentials.adzuna_app_key),
                JSearchAdapter(credentials.jsearch_api_key),
                JoobleAdapter(credentials.jooble_api_key),
            ]
        )

    def available_adapters(self) -> list[JobAdapter]:
        return [adapter for adapter in self.adapters if adapter.is_available()]

    async def search(self, query: ProviderQuery) -> list[RawListing]:
        adapters = self.available_adapters()
        if not adapters:
            LOGGER.warning(json.dumps({"event": "no_providers_available"}))
            return []

        results: list[RawListing] = []
        for index, adapter in enumerate(adapters):
            if adapter.name == "jooble" and len(results) >= self.early_exit_threshold:
                continue
            if index > 0 and self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            try:
                found = await adapter.search(query)
            except (ProviderError, httpx.HTTPError, ValueError) as exc:
                LOGGER.warning(
                    json.dumps(
                        {
                            "event": "provider_failed",
                            "provider": adapter.name,
                            "keywords": query.keywords,
                            "error": str(exc),
                        }
                    )
                )
                continue
            results.extend(listing for listing in found if listing.title)
            LOGGER.info(
                json.dumps(
                    {
                        "event": "provider_results",
                        "provider": adapter.name,
                        "count": len(found),
                        "total": len(results),
                    }
                )
            )
        return results
