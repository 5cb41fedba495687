from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class AttachmentIn(BaseModel):
    file_name: str = Field(min_length=1)
    file_url: str = Field(min_length=1)
    file_type: str = ""
    file_size: int = Field(default=0, ge=0)


class CustomFieldIn(BaseModel):
    name: str = Field(min_length=1)
    value: Any = None


class AchievementCreateRequest(BaseModel):
    category: str
    title: str
    description: str
    details: dict[str, Any] = Field(default_factory=dict)
    attachments: list[AttachmentIn] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    custom_fields: list[CustomFieldIn] = Field(default_factory=list)


class AchievementUpdateRequest(BaseModel):
    category: str | None = None
    title: str | None = None
    description: str | None = None
    details: dict[str, Any] | None = None
    attachments: list[AttachmentIn] | None = None
    tags: list[str] | None = None
    custom_fields: list[CustomFieldIn] | None = None


class VerificationDecisionRequest(BaseModel):
    decision: Literal["verified", "rejected"]
    rejection_note: str | None = None


class RepairRequest(BaseModel):
    student_id: str | None = None
    dry_run: bool = False


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    if details is not None:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "meta": {
            "trace_id": trace_id,
        },
    }
