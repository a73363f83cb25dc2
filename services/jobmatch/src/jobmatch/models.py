from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ExperienceLevel = Literal["junior", "mid", "senior"]
RemotePreference = Literal["any", "remote", "hybrid", "onsite"]
RemoteType = Literal["any", "remote", "hybrid", "onsite"]
ProgressStage = Literal[
    "auth",
    "analyzing",
    "detecting",
    "searching",
    "inserting",
    "scoring",
    "complete",
    "error",
]
TERMINAL_STAGES: frozenset[str] = frozenset({"complete", "error"})


class PersonalInfo(BaseModel):
    full_name: str = ""
    email: str | None = None
    phone: str | None = None
    location: str | None = None
    linkedin: str | None = None
    website: str | None = None


class WorkExperience(BaseModel):
    position: str
    company: str = ""
    start_date: str | None = None
    end_date: str | None = None
    current: bool = False
    description: str | None = None
    achievements: list[str] = Field(default_factory=list)


class Education(BaseModel):
    degree: str = ""
    field: str = ""
    institution: str = ""


class Skill(BaseModel):
    name: str
    category: str = "Other"


class Language(BaseModel):
    name: str
    level: str = ""


class CVData(BaseModel):
    personal_info: PersonalInfo = Field(default_factory=PersonalInfo)
    summary: str | None = None
    work_experience: list[WorkExperience] = Field(default_factory=list)
    education: list[Education] = Field(default_factory=list)
    skills: list[Skill] = Field(default_factory=list)
    languages: list[Language] = Field(default_factory=list)


class PreferencesPayload(BaseModel):
    target_roles: list[str] = Field(default_factory=list)
    target_locations: list[str] = Field(default_factory=list)
    remote_preference: RemotePreference = "any"
    min_salary: int | None = Field(default=None, ge=0)
    max_salary: int | None = Field(default=None, ge=0)
    salary_currency: str = "PLN"
    required_skills: list[str] = Field(default_factory=list)
    preferred_skills: list[str] = Field(default_factory=list)
    employment_types: list[str] = Field(default_factory=list)
    experience_level: str | None = None


class Preferences(PreferencesPayload):
    user_id: str
    updated_at: str | None = None

    def fingerprint_snapshot(self) -> dict[str, Any]:
        return {
            "target_roles": self.target_roles,
            "remote_preference": self.remote_preference,
            "min_salary": self.min_salary,
            "employment_types": self.employment_types,
        }


class SearchCriteria(BaseModel):
    model_config = ConfigDict(frozen=True)

    search_queries: list[str] = Field(..., min_length=1, max_length=4)
    role_variants: list[str] = Field(default_factory=list)
    industry_domain: str | None = None
    years_experience: float = Field(default=0, ge=0)
    skills: list[str] = Field(default_factory=list)
    primary_skills: list[str] = Field(default_factory=list, max_length=5)
    secondary_skills: list[str] = Field(default_factory=list)
    experience_level: ExperienceLevel

    def search_terms_snapshot(self) -> dict[str, Any]:
        return {
            "queries": self.search_queries,
            "skills": self.skills,
            "primarySkills": self.primary_skills,
            "experienceLevel": self.experience_level,
            "yearsExperience": self.years_experience,
            "industryDomain": self.industry_domain,
            "roleVariants": self.role_variants,
        }


class ProviderQuery(BaseModel):
    keywords: str
    location: str | None = None
    country: str | None = None
    page: int = 1
    results_per_page: int = 20


class SearchConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    location: str
    country: str | None = None

    @property
    def key(self) -> str:
        return f"{self.location}:{self.country or ''}"


class RawListing(BaseModel):
    title: str
    company: str = "Unknown"
    location: str | None = None
    description: str | None = None
    url: str = ""
    salary_min: float | None = None
    salary_max: float | None = None
    salary_currency: str | None = None
    posted_at: str | None = None
    source: str
    company_logo_url: str | None = None
    employment_type: str | None = None
    experience_level: str | None = None
    is_remote: bool | None = None
    apply_link: str | None = None
    external_id: str | None = None


class JobListing(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    title: str
    company: str
    location: str | None = None
    remote_type: RemoteType = "any"
    description: str | None = None
    requirements: str | None = None
    salary_min: int | None = None
    salary_max: int | None = None
    salary_currency: str = "PLN"
    salary_type: str = "monthly"
    source: str
    source_url: str = ""
    dedup_key: str
    company_logo_url: str | None = None
    skills: list[str] = Field(default_factory=list)
    experience_level: str | None = None
    employment_type: str | None = None
    posted_at: datetime | None = None
    created_at: str | None = None

    @property
    def has_salary(self) -> bool:
        return bool(self.salary_min or self.salary_max)


class ScoredListing(JobListing):
    compatibility_score: int = Field(..., ge=0, le=100)


class RecommendationBundle(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    recommendations: list[ScoredListing] = Field(default_factory=list)
    search_terms: dict[str, Any] = Field(default_factory=dict, alias="searchTerms")
    cached: bool = False


class CacheEntry(BaseModel):
    user_id: str
    fingerprint: str
    recommendations: list[ScoredListing]
    search_terms: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class ProgressDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_apis: int | None = Field(default=None, alias="totalApis")
    completed_apis: int | None = Field(default=None, alias="completedApis")
    jobs_found: int | None = Field(default=None, alias="jobsFound")
    jobs_inserted: int | None = Field(default=None, alias="jobsInserted")
    jobs_scored: int | None = Field(default=None, alias="jobsScored")
    cached: bool | None = None


class ProgressEvent(BaseModel):
    stage: ProgressStage
    message: str
    progress: int = Field(..., ge=0, le=100)
    details: ProgressDetails | None = None
    data: RecommendationBundle | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RecommendRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cv_data: CVData = Field(..., alias="cvData")
