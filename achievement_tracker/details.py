"""Category-specific achievement details.

Details arrive as an untyped key/value payload and are mapped into one
variant per category at the boundary. Unknown keys are dropped; numeric
strings and floats are coerced the same way JSON clients send them.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from achievement_tracker.errors import ValidationFailedError

CATEGORIES: tuple[str, ...] = (
    "competition",
    "research",
    "community_service",
    "academic",
    "organization",
)


class _DetailsBase(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    event_date: datetime | None = None
    location: str | None = None
    organizer: str | None = None
    score: int | None = Field(default=None, ge=0)


class CompetitionDetails(_DetailsBase):
    category: Literal["competition"] = "competition"
    competition_name: str | None = None
    competition_level: Literal["international", "national", "regional", "local"] | None = None
    rank: int | None = Field(default=None, ge=1)
    medal: str | None = None


class ResearchDetails(_DetailsBase):
    category: Literal["research"] = "research"
    publication_type: str | None = None
    publication_title: str | None = None
    publication_journal: str | None = None
    publisher: str | None = None
    issn: str | None = None


class CommunityServiceDetails(_DetailsBase):
    category: Literal["community_service"] = "community_service"
    activity_name: str | None = None
    hours: float | None = Field(default=None, ge=0)


class AcademicDetails(_DetailsBase):
    category: Literal["academic"] = "academic"
    certification_name: str | None = None
    issued_by: str | None = None
    certification_number: str | None = None
    valid_until: datetime | None = None


class OrganizationDetails(_DetailsBase):
    category: Literal["organization"] = "organization"
    organization_name: str | None = None
    position: str | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None

    @model_validator(mode="after")
    def _check_period(self) -> "OrganizationDetails":
        if self.period_start and self.period_end and self.period_end < self.period_start:
            raise ValueError("period_end must not precede period_start")
        return self


AchievementDetails = Annotated[
    Union[
        CompetitionDetails,
        ResearchDetails,
        CommunityServiceDetails,
        AcademicDetails,
        OrganizationDetails,
    ],
    Field(discriminator="category"),
]

_details_adapter: TypeAdapter[Any] = TypeAdapter(AchievementDetails)


def ensure_category(category: str) -> str:
    normalized = (category or "").strip()
    if normalized not in CATEGORIES:
        raise ValidationFailedError(
            f"invalid category: {category!r}",
            details={"category": f"valid options: {', '.join(CATEGORIES)}"},
        )
    return normalized


def parse_details(category: str, payload: Mapping[str, Any] | None) -> AchievementDetails:
    """Map a raw details payload into the variant for ``category``."""
    normalized = ensure_category(category)
    raw = dict(payload or {})
    raw["category"] = normalized
    try:
        return _details_adapter.validate_python(raw)
    except ValidationError as exc:
        field_errors: dict[str, str] = {}
        for err in exc.errors():
            loc = ".".join(str(x) for x in err.get("loc", ()) if x != normalized)
            field_errors[loc or "details"] = str(err.get("msg", "invalid value"))
        raise ValidationFailedError(
            f"invalid details for category {normalized}",
            details=field_errors,
        ) from exc


def details_to_document(details: AchievementDetails) -> dict[str, Any]:
    return details.model_dump(mode="json", exclude_none=True)


def details_from_document(category: str, document: Mapping[str, Any] | None) -> AchievementDetails:
    return parse_details(category, document)
