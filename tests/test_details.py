import pytest

from achievement_tracker.details import (
    CommunityServiceDetails,
    CompetitionDetails,
    OrganizationDetails,
    details_from_document,
    details_to_document,
    ensure_category,
    parse_details,
)
from achievement_tracker.errors import ValidationFailedError


def test_parse_details_selects_variant_by_category():
    details = parse_details(
        "competition",
        {"competition_name": "ICPC Regional", "competition_level": "regional", "rank": "2", "unknown": "x"},
    )

    assert isinstance(details, CompetitionDetails)
    assert details.rank == 2
    assert details.competition_level == "regional"
    assert not hasattr(details, "unknown")


def test_parse_details_coerces_numeric_hours():
    details = parse_details("community_service", {"activity_name": "Flood relief", "hours": "12.5"})

    assert isinstance(details, CommunityServiceDetails)
    assert details.hours == 12.5


def test_parse_details_reports_field_errors():
    with pytest.raises(ValidationFailedError) as exc:
        parse_details("competition", {"rank": 0, "competition_level": "galactic"})

    assert exc.value.code == "ACH_VALIDATION_FAILED"
    assert "rank" in exc.value.details
    assert "competition_level" in exc.value.details


def test_organization_period_end_must_not_precede_start():
    with pytest.raises(ValidationFailedError):
        parse_details(
            "organization",
            {"organization_name": "BEM", "period_start": "2024-06-01T00:00:00Z", "period_end": "2024-01-01T00:00:00Z"},
        )

    ok = parse_details(
        "organization",
        {"organization_name": "BEM", "period_start": "2024-01-01T00:00:00Z", "period_end": "2024-06-01T00:00:00Z"},
    )
    assert isinstance(ok, OrganizationDetails)


def test_negative_score_is_rejected():
    with pytest.raises(ValidationFailedError) as exc:
        parse_details("research", {"score": -1})

    assert "score" in exc.value.details


def test_ensure_category_rejects_unknown_value():
    assert ensure_category(" academic ") == "academic"
    with pytest.raises(ValidationFailedError) as exc:
        ensure_category("sports")

    assert "category" in exc.value.details


def test_document_form_drops_empty_fields_and_reloads():
    details = parse_details("research", {"publication_title": "On Graphs", "issn": "1234-5678"})
    doc = details_to_document(details)

    assert doc == {"category": "research", "publication_title": "On Graphs", "issn": "1234-5678"}
    assert details_from_document("research", doc) == details
