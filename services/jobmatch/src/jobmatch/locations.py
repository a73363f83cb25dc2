from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Protocol

COUNTRY_PATTERNS: dict[str, str] = {
    "united kingdom": "uk",
    "england": "uk",
    "scotland": "uk",
    "wales": "uk",
    "united states": "us",
    "usa": "us",
    "america": "us",
    "australia": "au",
    "austria": "at",
    "belgium": "be",
    "brazil": "br",
    "canada": "ca",
    "switzerland": "ch",
    "germany": "de",
    "deutschland": "de",
    "spain": "es",
    "españa": "es",
    "france": "fr",
    "india": "in",
    "italy": "it",
    "italia": "it",
    "mexico": "mx",
    "méxico": "mx",
    "netherlands": "nl",
    "holland": "nl",
    "new zealand": "nz",
    "poland": "pl",
    "polska": "pl",
    "singapore": "sg",
    "south africa": "za",
    "gdansk": "pl",
    "gdańsk": "pl",
    "warsaw": "pl",
    "warszawa": "pl",
    "krakow": "pl",
    "kraków": "pl",
    "wroclaw": "pl",
    "wrocław": "pl",
    "poznan": "pl",
    "poznań": "pl",
    "lodz": "pl",
    "łódź": "pl",
    "katowice": "pl",
    "gdynia": "pl",
    "london": "uk",
    "manchester": "uk",
    "birmingham": "uk",
    "leeds": "uk",
    "glasgow": "uk",
    "edinburgh": "uk",
    "bristol": "uk",
    "new york": "us",
    "los angeles": "us",
    "chicago": "us",
    "houston": "us",
    "san francisco": "us",
    "seattle": "us",
    "austin": "us",
    "boston": "us",
    "denver": "us",
    "miami": "us",
    "berlin": "de",
    "munich": "de",
    "münchen": "de",
    "hamburg": "de",
    "frankfurt": "de",
}

SUFFIX_PATTERN = re.compile(r",\s*([a-z]{2})$")
KNOWN_CODES = frozenset(COUNTRY_PATTERNS.values()) | {"gb"}


@dataclass
class LocationResolution:
    location_countries: dict[str, str | None] = field(default_factory=dict)
    primary_country: str | None = None


class LocationResolver(Protocol):
    async def resolve(self, locations: list[str]) -> LocationResolution: ...


def resolvable_locations(locations: list[str]) -> list[str]:
    return [loc for loc in locations if loc and len(loc) >= 2 and loc.lower() != "remote"]


def detect_country(location: str) -> str | None:
    lowered = location.lower().strip()
    for pattern, code in COUNTRY_PATTERNS.items():
        if re.search(rf"\b{re.escape(pattern)}\b", lowered):
            return code
    suffix = SUFFIX_PATTERN.search(lowered)
    if suffix and suffix.group(1) in KNOWN_CODES:
        return "uk" if suffix.group(1) == "gb" else suffix.group(1)
    return None


class KeywordLocationResolver:
    """Resolves countries from a city/country table; no network involved."""

    async def resolve(self, locations: list[str]) -> LocationResolution:
        candidates = resolvable_locations(locations)
        mapping = {location: detect_country(location) for location in candidates}
        counts = Counter(code for code in mapping.values() if code)
        primary = counts.most_common(1)[0][0] if counts else None
        return LocationResolution(location_countries=mapping, primary_country=primary)
