from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from achievement_tracker.details import AchievementDetails, details_from_document, details_to_document
from achievement_tracker.status import DELETED, DRAFT


def utcnow() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True)
class Attachment:
    file_name: str
    file_url: str
    file_type: str = ""
    file_size: int = 0

    def to_document(self) -> dict[str, Any]:
        return {
            "file_name": self.file_name,
            "file_url": self.file_url,
            "file_type": self.file_type,
            "file_size": self.file_size,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Attachment":
        return cls(
            file_name=str(doc.get("file_name", "")),
            file_url=str(doc.get("file_url", "")),
            file_type=str(doc.get("file_type", "")),
            file_size=int(doc.get("file_size") or 0),
        )


@dataclass(frozen=True)
class CustomField:
    name: str
    value: Any = None


@dataclass
class Achievement:
    student_id: str
    category: str
    title: str
    description: str
    details: AchievementDetails
    custom_fields: list[CustomField] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    id: str | None = None
    deleted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "details": details_to_document(self.details),
            "custom_fields": [{"name": x.name, "value": x.value} for x in self.custom_fields],
            "attachments": [x.to_document() for x in self.attachments],
            "tags": list(self.tags),
            "deleted_at": _iso(self.deleted_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Achievement":
        category = str(doc.get("category", ""))
        return cls(
            id=doc.get("id"),
            student_id=str(doc.get("student_id", "")),
            category=category,
            title=str(doc.get("title", "")),
            description=str(doc.get("description", "")),
            details=details_from_document(category, doc.get("details")),
            custom_fields=[
                CustomField(name=str(x.get("name", "")), value=x.get("value"))
                for x in doc.get("custom_fields") or []
                if isinstance(x, dict)
            ],
            attachments=[Attachment.from_document(x) for x in doc.get("attachments") or [] if isinstance(x, dict)],
            tags=[str(x) for x in doc.get("tags") or []],
            deleted_at=_parse_dt(doc.get("deleted_at")),
            created_at=_parse_dt(doc.get("created_at")),
            updated_at=_parse_dt(doc.get("updated_at")),
        )


@dataclass
class AchievementReference:
    student_id: str
    achievement_id: str
    status: str = DRAFT
    id: str | None = None
    submitted_at: datetime | None = None
    verified_at: datetime | None = None
    verified_by: str | None = None
    rejection_note: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.status == DELETED

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "achievement_id": self.achievement_id,
            "status": self.status,
            "submitted_at": _iso(self.submitted_at),
            "verified_at": _iso(self.verified_at),
            "verified_by": self.verified_by,
            "rejection_note": self.rejection_note,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "AchievementReference":
        return cls(
            id=doc.get("id"),
            student_id=str(doc.get("student_id", "")),
            achievement_id=str(doc.get("achievement_id", "")),
            status=str(doc.get("status", DRAFT)),
            submitted_at=_parse_dt(doc.get("submitted_at")),
            verified_at=_parse_dt(doc.get("verified_at")),
            verified_by=doc.get("verified_by"),
            rejection_note=doc.get("rejection_note"),
            created_at=_parse_dt(doc.get("created_at")),
            updated_at=_parse_dt(doc.get("updated_at")),
        )


@dataclass(frozen=True)
class User:
    id: str
    username: str
    full_name: str
    role: str
    is_active: bool = True


@dataclass(frozen=True)
class Student:
    id: str
    user_id: str
    student_number: str
    program_study: str = ""
    academic_year: str = ""
    advisor_id: str | None = None


@dataclass(frozen=True)
class Lecturer:
    id: str
    user_id: str
    lecturer_number: str
    department: str = ""


@dataclass
class Notification:
    user_id: str
    kind: str
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    is_read: bool = False
    created_at: datetime | None = None

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "kind": self.kind,
            "title": self.title,
            "message": self.message,
            "data": dict(self.data),
            "is_read": self.is_read,
            "created_at": _iso(self.created_at),
        }


def parse_timestamp(value: Any) -> datetime | None:
    return _parse_dt(value)
