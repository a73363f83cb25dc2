from __future__ import annotations

import json
import logging
import re
from collections import Counter
from datetime import date
from typing import Any, Protocol

import httpx
from common.utils import normalize_whitespace
from pydantic import ValidationError

from jobmatch.errors import JobmatchError
from jobmatch.models import CVData, Preferences, SearchCriteria

LOGGER = logging.getLogger("jobmatch.analyzer")

SENIOR_TITLE_PATTERN = re.compile(
    r"\b(senior|sr\.?|lead|principal|staff|head|director|architect)\b", re.IGNORECASE
)
JUNIOR_TITLE_PATTERN = re.compile(r"\b(junior|jr\.?|intern|trainee|graduate)\b", re.IGNORECASE)
SENIORITY_WORDS = re.compile(
    r"\b(senior|sr\.?|junior|jr\.?|lead|principal|staff|mid|regular)\b\s*", re.IGNORECASE
)
DATE_PATTERN = re.compile(r"(\d{4})(?:[-/.](\d{1,2}))?")
PRIMARY_SKILL_COUNT = 5

INDUSTRY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "fintech": ("fintech", "bank", "banking", "payments", "trading", "insurance"),
    "healthcare": ("healthcare", "medical", "clinic", "hospital", "pharma"),
    "e-commerce": ("e-commerce", "ecommerce", "retail", "marketplace", "shop"),
    "saas": ("saas", "subscription", "b2b platform"),
    "gaming": ("gaming", "game studio", "games"),
}


class ProfileAnalyzer(Protocol):
    async def analyze(self, cv: CVData, preferences: Preferences | None) -> SearchCriteria: ...


def build_cv_text(cv: CVData) -> str:
    parts: list[str] = []
    if cv.personal_info.full_name:
        parts.append(f"Name: {cv.personal_info.full_name}")
    if cv.summary:
        parts.append(f"\nSummary:\n{cv.summary}")
    if cv.work_experience:
        parts.append("\nWork Experience:")
        for entry in cv.work_experience:
            end = "Present" if entry.current else (entry.end_date or "")
            parts.append(f"- {entry.position} at {entry.company} ({entry.start_date or ''} - {end})")
            if entry.description:
                parts.append(f"  {entry.description}")
            if entry.achievements:
                parts.append(f"  Achievements: {'; '.join(entry.achievements)}")
    if cv.education:
        parts.append("\nEducation:")
        for item in cv.education:
            parts.append(f"- {item.degree} in {item.field} from {item.institution}")
    if cv.skills:
        by_category: dict[str, list[str]] = {}
        for skill in cv.skills:
            by_category.setdefault(skill.category, []).append(skill.name)
        parts.append("\nSkills:")
        for category, names in by_category.items():
            parts.append(f"- {category}: {', '.join(names)}")
    if cv.languages:
        languages = ", ".join(f"{item.name} ({item.level})" for item in cv.languages)
        parts.append(f"\nLanguages: {languages}")
    return "\n".join(parts)


def build_preferences_context(preferences: Preferences | None) -> str:
    if preferences is None:
        return ""
    parts = ["\nUser Preferences:"]
    if preferences.target_roles:
        parts.append(f"- Target roles: {', '.join(preferences.target_roles)}")
    if preferences.target_locations:
        parts.append(f"- Preferred locations: {', '.join(preferences.target_locations)}")
    if preferences.remote_preference != "any":
        parts.append(f"- Remote preference: {preferences.remote_preference}")
    if preferences.experience_level:
        parts.append(f"- Target experience level: {preferences.experience_level}")
    if preferences.required_skills:
        parts.append(f"- Must-have skills: {', '.join(preferences.required_skills)}")
    return "\n".join(parts) if len(parts) > 1 else ""


def _parse_month(value: str | None) -> date | None:
    if not value:
        return None
    match = DATE_PATTERN.search(value)
    if match is None:
        return None
    year = int(match.group(1))
    if year < 1:
        return None
    month = int(match.group(2) or 1)
    return date(year, min(max(month, 1), 12), 1)


def estimate_years(cv: CVData, today: date | None = None) -> float:
    today = today or date.today()
    months = 0
    for entry in cv.work_experience:
        start = _parse_month(entry.start_date)
        if start is None:
            continue
        end = today if entry.current else (_parse_month(entry.end_date) or today)
        months += max((end.year - start.year) * 12 + end.month - start.month, 0)
    return round(months / 12, 1)


def infer_level(years: float, titles: list[str]) -> str:
    if years >= 5 or any(SENIOR_TITLE_PATTERN.search(title) for title in titles[:1]):
        return "senior"
    if years >= 2 and not any(JUNIOR_TITLE_PATTERN.search(title) for title in titles[:1]):
        return "mid"
    return "junior"


def detect_industry(text: str) -> str | None:
    lowered = text.lower()
    hits = Counter(
        {
            industry: sum(lowered.count(keyword) for keyword in keywords)
            for industry, keywords in INDUSTRY_KEYWORDS.items()
        }
    )
    best, count = hits.most_common(1)[0]
    return best if count > 0 else None


def _short(query: str, max_words: int = 4) -> str:
    return " ".join(normalize_whitespace(query).split()[:max_words])


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for value in values:
        cleaned = normalize_whitespace(value)
        if cleaned and cleaned.lower() not in seen:
            seen.add(cleaned.lower())
            result.append(cleaned)
    return result


class RuleBasedProfileAnalyzer:
    """Deterministic criteria extraction from the structured CV."""

    def __init__(self, today: date | None = None) -> None:
        self.today = today

    async def analyze(self, cv: CVData, preferences: Preferences | None) -> SearchCriteria:
        titles = [entry.position for entry in cv.work_experience if entry.position.strip()]
        years = estimate_years(cv, self.today)
        level = infer_level(years, titles)

        cv_text = build_cv_text(cv).lower()
        skills = _unique(
            [skill.name for skill in cv.skills]
            + (preferences.required_skills if preferences else [])
        )
        ranked_skills = sorted(
            skills,
            key=lambda name: -cv_text.count(name.lower()),
        )
        primary_skills = ranked_skills[:PRIMARY_SKILL_COUNT]
        secondary_skills = [name for name in skills if name not in primary_skills]

        target_roles = preferences.target_roles if preferences else []
        role_variants = _unique(
            target_roles + titles + [SENIORITY_WORDS.sub("", title) for title in titles]
        )
        industry = detect_industry(cv_text)

        queries: list[str] = []
        if target_roles or titles:
            primary_role = _short((target_roles or titles)[0])
            queries.append(primary_role)
            generic = _short(SENIORITY_WORDS.sub("", primary_role))
            if generic:
                queries.append(generic)
                if industry:
                    queries.append(_short(f"{industry} {generic}"))
        if primary_skills:
            queries.insert(min(len(queries), 2), _short(f"{primary_skills[0]} Developer"))
        queries = _unique(queries)[:4]
        if not queries:
            raise JobmatchError("Unable to derive search queries from the CV")

        return SearchCriteria(
            search_queries=queries,
            role_variants=role_variants,
            industry_domain=industry,
            years_experience=years,
            skills=skills,
            primary_skills=primary_skills,
            secondary_skills=secondary_skills,
            experience_level=level,
        )


class RemoteProfileAnalyzer:
    """Delegates criteria extraction to an HTTP analysis service."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def analyze(self, cv: CVData, preferences: Preferences | None) -> SearchCriteria:
        payload = {
            "cv_text": build_cv_text(cv),
            "preferences_text": build_preferences_context(preferences),
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
                body: dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise JobmatchError(f"Profile analysis failed: {exc}") from exc

        body["search_queries"] = list(body.get("search_queries") or [])[:4]
        try:
            criteria = SearchCriteria.model_validate(body)
        except ValidationError as exc:
            raise JobmatchError("Profile analysis returned invalid criteria") from exc
        if len(criteria.primary_skills) != PRIMARY_SKILL_COUNT:
            raise JobmatchError(
                f"Profile analysis must return {PRIMARY_SKILL_COUNT} primary skills, "
                f"got {len(criteria.primary_skills)}"
            )
        LOGGER.info(
            json.dumps(
                {
                    "event": "profile_analyzed",
                    "queries": criteria.search_queries,
                    "level": criteria.experience_level,
                    "years": criteria.years_experience,
                }
            )
        )
        return criteria
