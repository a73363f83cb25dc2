from __future__ import annotations

import pytest
from jobmatch.worktype import detect_work_type, detect_work_type_details

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("title", "description", "expected"),
    [
        ("Frontend Developer", "Fully remote team across Europe", "remote"),
        ("QA Engineer (100% remote)", None, "remote"),
        ("Backend Developer", "Work from home, flexible hours", "remote"),
        ("Java Developer", "Praca zdalna, umowa B2B", "remote"),
        ("Data Analyst", "Hybrid model, Warsaw office", "hybrid"),
        ("Tester", "Praca hybrydowa w Krakowie", "hybrid"),
        ("DevOps Engineer", "2 days in office per week", "hybrid"),
        ("Support Engineer", "This role is on-site in Gdansk", "onsite"),
        ("Accountant", "Office-based role, no remote", "onsite"),
        ("Python Developer", "Great team and modern stack", "any"),
    ],
)
def test_detect_work_type_from_text(title: str, description: str | None, expected: str) -> None:
    assert detect_work_type(title, description) == expected


def test_onsite_wording_beats_remote_wording() -> None:
    match = detect_work_type_details("Engineer", "Remote interviews, then in-person work in Berlin")

    assert match.work_type == "onsite"
    assert match.confidence == "high"
    assert match.keyword.lower() == "in-person"


def test_technical_remote_terms_are_not_work_arrangements() -> None:
    assert detect_work_type("Remote Sensing Scientist", "Satellite imagery analysis") == "any"
    assert detect_work_type("IT Technician", "Provide remote desktop support") == "any"


def test_remote_mention_after_technical_term_still_counts() -> None:
    description = "Build remote monitoring dashboards. " + "x" * 40 + " The job itself is remote."

    match = detect_work_type_details("Software Engineer", description)

    assert match.work_type == "remote"
    assert match.confidence == "medium"


def test_provider_flag_is_the_fallback() -> None:
    flagged = detect_work_type_details("Python Developer", "Great team", is_remote=True)

    assert flagged.work_type == "remote"
    assert flagged.confidence == "low"
    assert flagged.keyword is None
    assert detect_work_type("Python Developer", "Hybrid setup", is_remote=True) == "hybrid"
    assert detect_work_type("Python Developer", None, is_remote=False) == "any"
