from __future__ import annotations

import hashlib
import json
import re

from jobmatch.models import CVData, Preferences

FINGERPRINT_LENGTH = 32

COMPANY_SUFFIX_PATTERN = re.compile(
    r"\s+(inc|llc|ltd|corp|limited|corporation|gmbh|sp z oo|sa|ag)$",
    re.IGNORECASE,
)

LOCATION_ALIASES = {
    "londyn": "london",
    "warszawa": "warsaw",
    "krakow": "krakow",
    "wroclaw": "wroclaw",
    "poznan": "poznan",
    "gdansk": "gdansk",
    "new york city": "new york",
    "nyc": "new york",
    "sf": "san francisco",
    "la": "los angeles",
}


def normalize_text(text: str | None) -> str:
    if not text:
        return ""
    stripped = re.sub(r"[^a-z0-9\s]", "", text.lower().strip())
    return re.sub(r"\s+", " ", stripped).strip()


def normalize_company(company: str | None) -> str:
    return COMPANY_SUFFIX_PATTERN.sub("", normalize_text(company)).strip()


def normalize_location(location: str | None) -> str:
    if not location:
        return ""
    parts = [part.strip() for part in re.split(r"[,\-]", location) if part.strip()]
    city = normalize_text(parts[0] if parts else "")
    return LOCATION_ALIASES.get(city, city)


def build_dedup_key(title: str, company: str | None, location: str | None) -> str:
    key = "-".join(
        [
            normalize_text(title),
            normalize_company(company),
            normalize_location(location),
        ]
    )
    key = re.sub(r"\s+", "-", key)
    return re.sub(r"-+", "-", key).lower()


def build_listing_identity(title: str, company: str | None) -> str:
    return f"{normalize_text(title)}-{normalize_company(company)}"


def build_fingerprint(cv: CVData, preferences: Preferences | None) -> str:
    """Stable digest of the CV fields and preferences that drive recommendations.

    Keys are sorted before hashing so the digest depends only on content.
    """
    relevant = {
        "personal_info": cv.personal_info.model_dump(mode="json"),
        "skills": [skill.model_dump(mode="json") for skill in cv.skills],
        "experience": [entry.model_dump(mode="json") for entry in cv.work_experience],
        "preferences": preferences.fingerprint_snapshot() if preferences else None,
    }
    encoded = json.dumps(relevant, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]
