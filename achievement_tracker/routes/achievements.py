from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from achievement_tracker.routes._deps import auth_from_request, services_from_request, trace_id_from_request
from achievement_tracker.schemas import AchievementCreateRequest, AchievementUpdateRequest, success_envelope
from achievement_tracker.security import ROLE_ADMIN, ROLE_LECTURER, ROLE_STUDENT

router = APIRouter(prefix="/api/v1", tags=["achievements"])


@router.post("/achievements")
def create_achievement(payload: AchievementCreateRequest, request: Request):
    ctx = auth_from_request(request, ROLE_STUDENT)
    achievement, reference = services_from_request(request).lifecycle.create(
        ctx.subject,
        payload.category,
        payload.title,
        payload.description,
        payload.details,
        attachments=[x.model_dump() for x in payload.attachments],
        tags=payload.tags,
        custom_fields=[x.model_dump() for x in payload.custom_fields],
    )
    return JSONResponse(
        status_code=201,
        content=success_envelope(
            {"achievement": achievement.to_document(), "reference": reference.to_document()},
            trace_id_from_request(request),
            message="achievement created",
        ),
    )


@router.get("/achievements")
def list_achievements(request: Request):
    ctx = auth_from_request(request, ROLE_STUDENT)
    views = services_from_request(request).lifecycle.list_student_achievements(ctx.subject)
    return success_envelope(
        {"items": [x.to_dict() for x in views], "total": len(views)},
        trace_id_from_request(request),
    )


@router.get("/achievements/{achievement_id}")
def get_achievement(achievement_id: str, request: Request):
    ctx = auth_from_request(request, ROLE_STUDENT, ROLE_LECTURER)
    view = services_from_request(request).lifecycle.get_achievement_for_viewer(ctx.subject, achievement_id)
    return success_envelope(view.to_dict(), trace_id_from_request(request))


@router.put("/achievements/{achievement_id}")
def update_achievement(achievement_id: str, payload: AchievementUpdateRequest, request: Request):
    ctx = auth_from_request(request, ROLE_STUDENT)
    updated = services_from_request(request).lifecycle.update_draft(
        ctx.subject,
        achievement_id,
        category=payload.category,
        title=payload.title,
        description=payload.description,
        details=payload.details,
        attachments=None if payload.attachments is None else [x.model_dump() for x in payload.attachments],
        tags=payload.tags,
        custom_fields=None if payload.custom_fields is None else [x.model_dump() for x in payload.custom_fields],
    )
    return success_envelope(updated.to_document(), trace_id_from_request(request), message="achievement updated")


@router.delete("/achievements/{achievement_id}")
def delete_achievement(achievement_id: str, request: Request):
    ctx = auth_from_request(request, ROLE_STUDENT)
    deleted = services_from_request(request).lifecycle.soft_delete(ctx.subject, achievement_id)
    return success_envelope(deleted.to_document(), trace_id_from_request(request), message="achievement deleted")


@router.post("/achievements/{achievement_id}/submit")
def submit_achievement(achievement_id: str, request: Request):
    ctx = auth_from_request(request, ROLE_STUDENT)
    reference = services_from_request(request).lifecycle.submit(ctx.subject, achievement_id)
    return success_envelope(reference.to_document(), trace_id_from_request(request), message="achievement submitted")


@router.get("/admin/achievements")
def list_all_achievements(
    request: Request,
    limit: int = Query(default=10),
    offset: int = Query(default=0),
    status: str | None = Query(default=None),
    category: str | None = Query(default=None),
    student_id: str | None = Query(default=None),
):
    auth_from_request(request, ROLE_ADMIN)
    page = services_from_request(request).lifecycle.list_all_achievements(
        limit=limit,
        offset=offset,
        status=status,
        category=category,
        student_id=student_id,
    )
    return success_envelope(
        {
            "items": [x.to_dict() for x in page.items],
            "total": page.total,
            "limit": page.limit,
            "offset": page.offset,
        },
        trace_id_from_request(request),
    )
