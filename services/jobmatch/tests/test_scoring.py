from __future__ import annotations

from datetime import timedelta

import pytest
from fakes import NOW
from jobmatch.models import Preferences, SearchCriteria
from jobmatch.scoring import (
    CompatibilityScorer,
    ScoringContext,
    experience_score,
    infer_job_level,
    location_score,
    normalize_employment_type,
    penalty,
    recency_score,
    rejection_reason,
    salary_score,
    skill_score,
    title_score,
)

pytestmark = pytest.mark.unit


def context(criteria: SearchCriteria, preferences: Preferences | None = None) -> ScoringContext:
    return ScoringContext.build(criteria, preferences, NOW)


def scorer(**kwargs) -> CompatibilityScorer:
    return CompatibilityScorer(clock=lambda: NOW, **kwargs)


def test_junior_candidate_never_sees_senior_engineering_roles(
    criteria: SearchCriteria, make_listing
) -> None:
    senior = make_listing(title="Senior Software Engineer")
    junior = make_listing(title="Junior Frontend Developer", posted_at=NOW)

    result = scorer().score([senior, junior], criteria, None)

    assert [listing.title for listing in result.listings] == ["Junior Frontend Developer"]
    assert result.stats.experience == 1
    assert recency_score(junior, context(criteria)) == 100


def test_remote_seeker_filters_onsite_and_underpaid_roles(
    criteria: SearchCriteria, make_listing
) -> None:
    preferences = Preferences(user_id="u", remote_preference="remote", min_salary=8000)
    onsite = make_listing(
        title="Frontend Developer",
        remote_type="onsite",
        salary_min=12000,
        salary_max=15000,
        skills=["React", "TypeScript"],
    )
    underpaid = make_listing(title="Frontend Developer", remote_type="remote", salary_max=5000)
    kept = make_listing(title="Frontend Developer", remote_type="remote", salary_max=6000)

    result = scorer().score([onsite, underpaid, kept], criteria, preferences)

    assert [listing.id for listing in result.listings] == [kept.id]
    assert result.stats.remote == 1
    assert result.stats.salary == 1
    assert result.stats.total == 2


def test_admission_rules(criteria: SearchCriteria, make_listing) -> None:
    mid = criteria.model_copy(update={"experience_level": "mid"})
    typed = Preferences(user_id="u", employment_types=["full-time"], remote_preference="onsite")

    assert rejection_reason(make_listing(employment_type="Part-time"), criteria, typed) == (
        "employment_type"
    )
    assert rejection_reason(make_listing(employment_type="gig"), criteria, typed) is None
    assert rejection_reason(make_listing(remote_type="remote"), criteria, typed) == "remote"
    assert rejection_reason(make_listing(title="Volunteer Developer"), mid, None) == "quality"
    assert rejection_reason(make_listing(title="Volunteer Developer"), criteria, None) is None
    assert rejection_reason(make_listing(title="Lead Developer"), criteria, None) is None
    assert rejection_reason(make_listing(title="Sr. Designer"), criteria, None) == "experience"


def test_custom_salary_floor_ratio(criteria: SearchCriteria, make_listing) -> None:
    preferences = Preferences(user_id="u", min_salary=10000)
    listing = make_listing(salary_max=8500)
    assert rejection_reason(listing, criteria, preferences) is None
    assert rejection_reason(listing, criteria, preferences, salary_floor_ratio=0.9) == "salary"


def test_skill_score_uses_listing_skills_or_description(
    criteria: SearchCriteria, make_listing
) -> None:
    ctx = context(criteria)
    described = make_listing(skills=[], description="React, TypeScript and CSS work")
    primary = make_listing(skills=["react", "typescript"])
    mixed = make_listing(skills=["Node.js", "Kotlin"])

    assert skill_score(described, ctx) == 45
    assert skill_score(primary, ctx) == 100
    assert skill_score(mixed, ctx) == 50


def test_experience_score_table(criteria: SearchCriteria, make_listing) -> None:
    senior_ctx = context(criteria.model_copy(update={"experience_level": "senior"}))
    junior_ctx = context(criteria)

    assert experience_score(make_listing(title="Junior QA"), junior_ctx) == 100
    assert experience_score(make_listing(title="QA"), junior_ctx) == 70
    assert experience_score(make_listing(title="Staff Engineer"), junior_ctx) == 20
    assert experience_score(make_listing(title="QA", experience_level="mid"), senior_ctx) == 70
    assert experience_score(make_listing(title="Graduate QA"), senior_ctx) == 30
    assert infer_job_level("Engineering Manager") == "senior"
    assert infer_job_level("Developer", "Entry level") == "junior"


def test_title_score_levels(criteria: SearchCriteria, make_listing) -> None:
    ctx = context(criteria)
    assert title_score(make_listing(title="Frontend Developer (React)"), ctx) == 100
    assert title_score(make_listing(title="Frontend Lead"), ctx) == 80
    assert title_score(make_listing(title="UI Platform Engineer"), ctx) == 100
    assert title_score(make_listing(title="Accountant"), ctx) == 30

    web = context(criteria.model_copy(update={"role_variants": ["Frontend Web Developer"]}))
    assert title_score(make_listing(title="Backend Developer"), web) == 60


def test_salary_score_levels(criteria: SearchCriteria, make_listing) -> None:
    ctx = context(criteria, Preferences(user_id="u", min_salary=10000, max_salary=15000))

    assert salary_score(make_listing(), ctx) == 70
    assert salary_score(make_listing(salary_min=11000, salary_max=14000), ctx) == 100
    assert salary_score(make_listing(salary_min=20000, salary_max=25000), ctx) == 100
    assert salary_score(make_listing(salary_min=9000, salary_max=12000), ctx) == 80
    assert salary_score(make_listing(salary_min=7000, salary_max=8500), ctx) == 50
    assert salary_score(make_listing(salary_min=3000, salary_max=4000), ctx) == 20
    assert salary_score(make_listing(salary_max=4000), context(criteria)) == 70


def test_location_score_tables(criteria: SearchCriteria, make_listing) -> None:
    remote = context(criteria, Preferences(user_id="u", remote_preference="remote"))
    onsite = context(criteria, Preferences(user_id="u", remote_preference="onsite"))
    hybrid = context(criteria, Preferences(user_id="u", remote_preference="hybrid"))
    anywhere = context(criteria, Preferences(user_id="u", target_locations=["warsaw"]))

    assert location_score(make_listing(remote_type="hybrid"), remote) == 70
    assert location_score(make_listing(remote_type="remote"), onsite) == 40
    assert location_score(make_listing(remote_type="onsite"), hybrid) == 70
    assert location_score(make_listing(remote_type="hybrid"), hybrid) == 100
    assert location_score(make_listing(location="Warsaw, PL"), anywhere) == 100
    assert location_score(make_listing(location="Berlin"), anywhere) == 70
    assert location_score(make_listing(), context(criteria)) == 70


def test_recency_steps(criteria: SearchCriteria, make_listing) -> None:
    ctx = context(criteria)
    ages = {2: 90, 5: 80, 10: 60, 20: 40, 45: 20}
    for days, expected in ages.items():
        assert recency_score(make_listing(posted_at=NOW - timedelta(days=days)), ctx) == expected
    assert recency_score(make_listing(posted_at=None), ctx) == 50


def test_penalties(criteria: SearchCriteria, make_listing) -> None:
    remote_senior = criteria.model_copy(update={"experience_level": "senior"})
    ctx = context(remote_senior, Preferences(user_id="u", remote_preference="remote"))

    listing = make_listing(
        description="Requires 5+ years of experience. Relocation required. Entry-level pay."
    )

    assert penalty(listing, ctx) == 45
    assert penalty(make_listing(description="1 year experience"), context(criteria)) == 0


def test_employment_type_normalization() -> None:
    assert normalize_employment_type("FULLTIME") == "full-time"
    assert normalize_employment_type("permanent") == "full-time"
    assert normalize_employment_type("Freelance") == "contract"
    assert normalize_employment_type("B2B") == "b2b"
    assert normalize_employment_type("Internship") == "internship"
    assert normalize_employment_type("gig") is None


def test_scores_are_bounded_and_sorted(criteria: SearchCriteria, make_listing) -> None:
    listings = [
        make_listing(title="Frontend Developer", skills=["React"], posted_at=NOW),
        make_listing(title="Frontend Developer", skills=["React"], posted_at=NOW - timedelta(days=2)),
        make_listing(title="Frontend Developer", skills=["React"], posted_at=None),
        make_listing(title="Accountant", description="Spreadsheets", posted_at=NOW),
        make_listing(
            title="Backend Engineer",
            description="10 years experience required",
            posted_at=NOW - timedelta(days=40),
        ),
    ]

    result = scorer().score(listings, criteria, None)

    scores = [listing.compatibility_score for listing in result.listings]
    assert all(0 <= score <= 100 for score in scores)
    for first, second in zip(result.listings, result.listings[1:]):
        assert first.compatibility_score >= second.compatibility_score
        if first.compatibility_score == second.compatibility_score and second.posted_at:
            assert first.posted_at is not None and first.posted_at >= second.posted_at


def test_equal_scores_order_by_recency_with_unknown_last(
    criteria: SearchCriteria, make_listing
) -> None:
    common = {"title": "Frontend Developer", "skills": ["react"], "company": "Same"}
    older = make_listing(**{**common, "company": "Older"}, posted_at=NOW - timedelta(hours=30))
    newer = make_listing(**{**common, "company": "Newer"}, posted_at=NOW - timedelta(hours=26))
    unknown = make_listing(**{**common, "company": "Unknown"}, posted_at=None)

    result = scorer().score([unknown, older, newer], criteria, None)

    assert [listing.company for listing in result.listings][:2] == ["Newer", "Older"]
    scores = {listing.company: listing.compatibility_score for listing in result.listings}
    assert scores["Newer"] == scores["Older"]


def test_in_set_duplicates_keep_first_occurrence(criteria: SearchCriteria, make_listing) -> None:
    first = make_listing(title="UI Engineer", company="Acme Inc.")
    repeat = make_listing(title="ui engineer", company="ACME", location="Berlin")

    result = scorer().score([first, repeat], criteria, None)

    assert [listing.id for listing in result.listings] == [first.id]
    assert result.stats.duplicates == 1


def test_output_is_truncated(criteria: SearchCriteria, make_listing) -> None:
    listings = [make_listing(title=f"Frontend Developer {index}") for index in range(8)]
    result = scorer(max_results=5).score(listings, criteria, None)
    assert len(result.listings) == 5
