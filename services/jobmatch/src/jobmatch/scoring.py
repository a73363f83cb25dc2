from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

from common.utils import now_utc

from jobmatch.config import MAX_RECOMMENDATIONS, SALARY_FLOOR_RATIO
from jobmatch.hashing import build_listing_identity
from jobmatch.models import JobListing, Preferences, ScoredListing, SearchCriteria

LOGGER = logging.getLogger("jobmatch.scoring")

WEIGHTS = {
    "skill": 0.35,
    "experience": 0.20,
    "title": 0.15,
    "salary": 0.10,
    "location": 0.10,
    "recency": 0.05,
    "employment": 0.05,
}

SENIOR_TITLE = re.compile(r"\b(senior|sr|lead|principal|staff|head|director|architect)\b")
SENIOR_ROLE = re.compile(
    r"\b(senior|sr\.?)\s+(?:[\w.+#-]+\s+){0,2}(developer|engineer|designer)\b", re.IGNORECASE
)
UNPAID_TITLE = re.compile(r"\b(unpaid|volunteer|internship)\b")
JUNIOR_LEVEL_TITLE = re.compile(r"\b(junior|jr\.?|entry|intern|trainee|graduate)\b")
SENIOR_LEVEL_TITLE = re.compile(
    r"\b(senior|sr\.?|lead|principal|staff|head|director|manager|architect)\b"
)
REQUIRED_YEARS = re.compile(r"(\d+)\+?\s*years?\s*(of\s*)?(experience|exp)", re.IGNORECASE)
RELOCATION = re.compile(r"\b(relocation\s+required|must\s+relocate|on-?site\s+only)\b", re.IGNORECASE)
ENTRY_LEVEL = re.compile(r"\b(entry.level|new\s+grad|recent\s+graduate)\b", re.IGNORECASE)

ROLE_KEYWORDS = ("developer", "engineer", "designer", "architect", "analyst", "manager", "consultant")

EXPERIENCE_MISMATCH = {
    ("junior", "mid"): 60,
    ("junior", "senior"): 20,
    ("mid", "junior"): 50,
    ("mid", "senior"): 60,
    ("senior", "junior"): 30,
    ("senior", "mid"): 70,
}

REMOTE_FIT = {
    "remote": {"remote": 100, "hybrid": 70, "onsite": 20},
    "onsite": {"onsite": 100, "hybrid": 80, "remote": 40},
}

RECENCY_STEPS = ((1, 100), (3, 90), (7, 80), (14, 60), (30, 40))


@dataclass
class FilterStats:
    salary: int = 0
    experience: int = 0
    remote: int = 0
    employment_type: int = 0
    quality: int = 0
    duplicates: int = 0
    total: int = 0


@dataclass
class ScoringResult:
    listings: list[ScoredListing] = field(default_factory=list)
    stats: FilterStats = field(default_factory=FilterStats)


@dataclass(frozen=True)
class ScoringContext:
    primary_skills: frozenset[str]
    all_skills: frozenset[str]
    role_variants: tuple[str, ...]
    level: str
    years: float
    preferences: Preferences | None
    now: datetime

    @classmethod
    def build(
        cls, criteria: SearchCriteria, preferences: Preferences | None, now: datetime
    ) -> ScoringContext:
        return cls(
            primary_skills=frozenset(skill.lower() for skill in criteria.primary_skills),
            all_skills=frozenset(skill.lower() for skill in criteria.skills),
            role_variants=tuple(variant.lower() for variant in criteria.role_variants),
            level=criteria.experience_level,
            years=criteria.years_experience,
            preferences=preferences,
            now=now,
        )


def normalize_employment_type(value: str | None) -> str | None:
    if not value:
        return None
    lowered = value.lower()
    if "full" in lowered or lowered == "permanent":
        return "full-time"
    if "part" in lowered:
        return "part-time"
    if "contract" in lowered or "freelance" in lowered:
        return "contract"
    if "b2b" in lowered:
        return "b2b"
    if "intern" in lowered:
        return "internship"
    return None


def infer_job_level(title: str, explicit_level: str | None = None) -> str | None:
    if explicit_level:
        lowered = explicit_level.lower()
        if "junior" in lowered or "entry" in lowered:
            return "junior"
        if "senior" in lowered or "lead" in lowered or "principal" in lowered:
            return "senior"
        if "mid" in lowered:
            return "mid"
    title_lower = title.lower()
    if JUNIOR_LEVEL_TITLE.search(title_lower):
        return "junior"
    if SENIOR_LEVEL_TITLE.search(title_lower):
        return "senior"
    return None


def rejection_reason(
    job: JobListing,
    criteria: SearchCriteria,
    preferences: Preferences | None,
    *,
    salary_floor_ratio: float = SALARY_FLOOR_RATIO,
) -> str | None:
    """Return the name of the first admission rule the listing breaks, if any."""
    if preferences and preferences.min_salary and job.salary_max:
        if job.salary_max < preferences.min_salary * salary_floor_ratio:
            return "salary"

    title_lower = job.title.lower()
    if criteria.experience_level == "junior" and SENIOR_TITLE.search(title_lower):
        if SENIOR_ROLE.search(job.title):
            return "experience"

    if preferences and preferences.employment_types and job.employment_type:
        normalized = normalize_employment_type(job.employment_type)
        if normalized and normalized not in preferences.employment_types:
            return "employment_type"

    if preferences:
        if preferences.remote_preference == "remote" and job.remote_type == "onsite":
            return "remote"
        if preferences.remote_preference == "onsite" and job.remote_type == "remote":
            return "remote"

    if UNPAID_TITLE.search(title_lower) and criteria.experience_level != "junior":
        return "quality"
    return None


def skill_score(job: JobListing, ctx: ScoringContext) -> float:
    job_skills = {skill.lower() for skill in job.skills}
    if not job_skills:
        description = (job.description or "").lower()
        matches = sum(1 for skill in ctx.all_skills if skill in description)
        return min(100, matches * 15)

    weighted = 0
    for skill in job_skills:
        if skill in ctx.primary_skills:
            weighted += 2
        elif skill in ctx.all_skills:
            weighted += 1
    return min(100, weighted / len(job_skills) * 100)


def experience_score(job: JobListing, ctx: ScoringContext) -> float:
    job_level = infer_job_level(job.title, job.experience_level)
    if job_level == ctx.level:
        return 100
    if job_level is None:
        return 70
    return EXPERIENCE_MISMATCH.get((ctx.level, job_level), 50)


def title_score(job: JobListing, ctx: ScoringContext) -> float:
    title_lower = job.title.lower()
    for variant in ctx.role_variants:
        words = [word for word in variant.split() if len(word) > 2]
        matched = sum(1 for word in words if word in title_lower)
        if matched >= len(words) * 0.7:
            return 100
        if matched >= len(words) * 0.5:
            return 80

    for keyword in ROLE_KEYWORDS:
        if keyword in title_lower and any(keyword in variant for variant in ctx.role_variants):
            return 60
    return 30


def salary_score(job: JobListing, ctx: ScoringContext) -> float:
    preferences = ctx.preferences
    if not preferences or not preferences.min_salary or not job.has_salary:
        return 70

    job_min = job.salary_min or 0
    job_max = job.salary_max or job.salary_min or 0
    user_min = preferences.min_salary
    user_max = preferences.max_salary or user_min * 1.5

    if job_min >= user_min:
        return 100
    if job_max >= user_min and job_min <= user_max:
        return 80
    if job_max >= user_min * 0.8:
        return 50
    return 20


def location_score(job: JobListing, ctx: ScoringContext) -> float:
    preferences = ctx.preferences
    if preferences is None:
        return 70

    preference = preferences.remote_preference
    table = REMOTE_FIT.get(preference)
    if table and job.remote_type in table:
        return table[job.remote_type]
    if preference == "hybrid":
        return 100 if job.remote_type == "hybrid" else 70

    if preferences.target_locations and job.location:
        location_lower = job.location.lower()
        if any(target.lower() in location_lower for target in preferences.target_locations):
            return 100
    return 70


def recency_score(job: JobListing, ctx: ScoringContext) -> float:
    if job.posted_at is None:
        return 50
    posted_at = job.posted_at
    if posted_at.tzinfo is None:
        posted_at = posted_at.replace(tzinfo=UTC)
    days = (ctx.now - posted_at).total_seconds() / 86400
    for limit, score in RECENCY_STEPS:
        if days <= limit:
            return score
    return 20


def employment_score(job: JobListing, ctx: ScoringContext) -> float:
    preferences = ctx.preferences
    if not preferences or not preferences.employment_types:
        return 70
    if not job.employment_type:
        return 60
    normalized = normalize_employment_type(job.employment_type)
    if normalized and normalized in preferences.employment_types:
        return 100
    return 40


FACTORS: dict[str, Callable[[JobListing, ScoringContext], float]] = {
    "skill": skill_score,
    "experience": experience_score,
    "title": title_score,
    "salary": salary_score,
    "location": location_score,
    "recency": recency_score,
    "employment": employment_score,
}


def penalty(job: JobListing, ctx: ScoringContext) -> float:
    total = 0
    description = (job.description or "").lower()

    required = REQUIRED_YEARS.search(description)
    if required and int(required.group(1)) > ctx.years * 1.5:
        total += 15

    if ctx.preferences and ctx.preferences.remote_preference == "remote":
        if RELOCATION.search(description):
            total += 20

    if ctx.level == "senior" and ENTRY_LEVEL.search(description):
        total += 10
    return total


def weighted_score(job: JobListing, ctx: ScoringContext) -> int:
    raw = sum(FACTORS[name](job, ctx) * weight for name, weight in WEIGHTS.items())
    clamped = min(100.0, max(0.0, raw - penalty(job, ctx)))
    return math.floor(clamped + 0.5)


def _sort_key(listing: ScoredListing) -> tuple[int, int, float]:
    if listing.posted_at is None:
        return (-listing.compatibility_score, 1, 0.0)
    return (-listing.compatibility_score, 0, -listing.posted_at.timestamp())


class CompatibilityScorer:
    """Admission filter, in-set dedup, weighted scoring and ranking."""

    def __init__(
        self,
        *,
        salary_floor_ratio: float = SALARY_FLOOR_RATIO,
        max_results: int = MAX_RECOMMENDATIONS,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.salary_floor_ratio = salary_floor_ratio
        self.max_results = max_results
        self._clock = clock

    def score(
        self,
        listings: list[JobListing],
        criteria: SearchCriteria,
        preferences: Preferences | None,
    ) -> ScoringResult:
        ctx = ScoringContext.build(criteria, preferences, self._clock())
        stats = FilterStats()
        unique: dict[str, ScoredListing] = {}

        for job in listings:
            reason = rejection_reason(
                job, criteria, preferences, salary_floor_ratio=self.salary_floor_ratio
            )
            if reason is not None:
                setattr(stats, reason, getattr(stats, reason) + 1)
                stats.total += 1
                continue

            identity = build_listing_identity(job.title, job.company)
            if identity in unique:
                stats.duplicates += 1
                continue
            unique[identity] = ScoredListing(
                **job.model_dump(), compatibility_score=weighted_score(job, ctx)
            )

        ranked = sorted(unique.values(), key=_sort_key)[: self.max_results]
        LOGGER.info(
            json.dumps(
                {
                    "event": "scoring_complete",
                    "candidates": len(listings),
                    "passed": len(unique),
                    "filtered": asdict(stats),
                }
            )
        )
        return ScoringResult(listings=ranked, stats=stats)
