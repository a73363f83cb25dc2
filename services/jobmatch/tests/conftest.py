from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from fakes import NOW
from jobmatch.models import CVData, JobListing, RawListing, SearchCriteria
from jobmatch.store import SqliteCatalogStore


@pytest.fixture
def store(tmp_path: Path):
    catalog = SqliteCatalogStore(str(tmp_path / "jobmatch.sqlite3"))
    catalog.connect()
    yield catalog
    catalog.close()


@pytest.fixture
def criteria() -> SearchCriteria:
    return SearchCriteria(
        search_queries=["Frontend Developer", "React Developer", "Frontend Engineer"],
        role_variants=["Frontend Developer", "UI Engineer"],
        industry_domain=None,
        years_experience=1,
        skills=["React", "TypeScript", "CSS", "HTML", "Jest", "Node.js"],
        primary_skills=["React", "TypeScript", "CSS", "HTML", "Jest"],
        secondary_skills=["Node.js"],
        experience_level="junior",
    )


@pytest.fixture
def cv() -> CVData:
    return CVData.model_validate(
        {
            "personal_info": {"full_name": "Alex Doe", "location": "Warsaw, Poland"},
            "summary": "Frontend developer focused on React interfaces.",
            "work_experience": [
                {
                    "position": "Junior Frontend Developer",
                    "company": "Acme Inc.",
                    "start_date": "2025-06",
                    "current": True,
                    "description": "Built React and TypeScript dashboards.",
                }
            ],
            "skills": [
                {"name": "React", "category": "Frontend"},
                {"name": "TypeScript", "category": "Languages"},
            ],
        }
    )


@pytest.fixture
def make_listing() -> Callable[..., JobListing]:
    counter = iter(range(1, 10_000))

    def build(**overrides: Any) -> JobListing:
        index = next(counter)
        values: dict[str, Any] = {
            "id": f"job-{index}",
            "title": "Frontend Developer",
            "company": f"Company {index}",
            "location": "Warsaw",
            "remote_type": "any",
            "description": "Work with React and TypeScript.",
            "source": "adzuna",
            "dedup_key": f"key-{index}",
            "posted_at": NOW,
        }
        values.update(overrides)
        return JobListing(**values)

    return build


@pytest.fixture
def make_raw() -> Callable[..., RawListing]:
    def build(title: str, company: str = "Acme", location: str | None = "Warsaw", **extra: Any):
        return RawListing(
            title=title,
            company=company,
            location=location,
            url=f"https://jobs.example/{title.replace(' ', '-').lower()}",
            source=extra.pop("source", "jsearch"),
            posted_at=extra.pop("posted_at", NOW.isoformat()),
            **extra,
        )

    return build
