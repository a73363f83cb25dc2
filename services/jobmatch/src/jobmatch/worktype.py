from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from jobmatch.models import RemoteType

Confidence = Literal["high", "medium", "low"]

FALSE_POSITIVE_CONTEXT = 20


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)


# "remote" as a technical term rather than a work arrangement.
FALSE_POSITIVES = _compile(
    r"\bremote\s+sens(ing|or)",
    r"\bremote\s+control",
    r"\bremote\s+desktop",
    r"\bremote\s+access",
    r"\bremote\s+server",
    r"\bremote\s+support",
    r"\bremote\s+monitoring",
    r"\bremote\s+management",
)

HYBRID_SCHEDULE = _compile(
    r"\b\d+\s*days?\s+(in\s+)?(the\s+)?(office|on[- ]?site)",
    r"\b(office|on[- ]?site)\s+\d+\s*days?",
)

ONSITE = _compile(
    r"\bon[- ]?site\b",
    r"\bin[- ]?office\b",
    r"\boffice[- ]?based\b",
    r"\bin[- ]?person\b",
    r"\bno\s+remote\b",
    r"\bstacjonarn[aey]\b",
    r"\bpraca\s+stacjonarn",
)

HYBRID = _compile(
    r"\bhybrid\b",
    r"\bflex[- ]?work\b",
    r"\bflexible\s+work(ing)?\s+(arrangement|location|model)",
    r"\bhybrydow[aey]\b",
    r"\bpraca\s+hybrydow",
)

REMOTE_EXPLICIT = _compile(
    r"\bfully\s+remote\b",
    r"\b100\s*%\s*remote\b",
    r"\bwork\s+from\s+anywhere\b",
    r"\bremote[- ]?first\b",
    r"\bremote[- ]?only\b",
    r"\bw\s*pe[łl]ni\s+zdaln",
    r"\bcałkowicie\s+zdaln",
)

REMOTE_GENERAL = _compile(
    r"\bremote\b",
    r"\bwfh\b",
    r"\bwork\s+from\s+home\b",
    r"\bhome[- ]?office\b",
    r"\btelecommut",
    r"\bzdaln[aey]\b",
    r"\bpraca\s+zdaln",
)

# Checked in order; the first rule with a match decides.
RULES: tuple[tuple[RemoteType, tuple[re.Pattern[str], ...], Confidence], ...] = (
    ("hybrid", HYBRID_SCHEDULE, "high"),
    ("onsite", ONSITE, "high"),
    ("hybrid", HYBRID, "high"),
    ("remote", REMOTE_EXPLICIT, "high"),
    ("remote", REMOTE_GENERAL, "medium"),
)


@dataclass(frozen=True)
class WorkTypeMatch:
    work_type: RemoteType
    keyword: str | None
    confidence: Confidence


def _is_false_positive(text: str, match: re.Match[str]) -> bool:
    start = max(match.start() - FALSE_POSITIVE_CONTEXT, 0)
    window = text[start : match.end() + FALSE_POSITIVE_CONTEXT]
    return any(pattern.search(window) for pattern in FALSE_POSITIVES)


def _first_match(
    text: str,
    patterns: Iterable[re.Pattern[str]],
    *,
    check_false_positives: bool = False,
) -> str | None:
    for pattern in patterns:
        for match in pattern.finditer(text):
            if check_false_positives and _is_false_positive(text, match):
                continue
            return match.group(0)
    return None


def detect_work_type_details(
    title: str,
    description: str | None = None,
    is_remote: bool | None = None,
) -> WorkTypeMatch:
    """Classify a posting as onsite, hybrid, remote or any from its text.

    Explicit office requirements beat hybrid wording, which beats remote
    wording. A day-count schedule such as "2 days in office" counts as hybrid.
    The provider's remote flag is only consulted when the text says nothing.
    """
    text = f"{title} {description or ''}"

    for work_type, patterns, confidence in RULES:
        keyword = _first_match(text, patterns, check_false_positives=confidence == "medium")
        if keyword is not None:
            return WorkTypeMatch(work_type, keyword, confidence)
    if is_remote:
        return WorkTypeMatch("remote", None, "low")
    return WorkTypeMatch("any", None, "low")


def detect_work_type(
    title: str,
    description: str | None = None,
    is_remote: bool | None = None,
) -> RemoteType:
    return detect_work_type_details(title, description, is_remote).work_type
