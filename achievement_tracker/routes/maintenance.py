from __future__ import annotations

import logging

from fastapi import APIRouter, Query, Request

from achievement_tracker.errors import UnauthorizedError, ValidationFailedError
from achievement_tracker.routes._deps import auth_from_request, services_from_request, trace_id_from_request
from achievement_tracker.schemas import RepairRequest, success_envelope
from achievement_tracker.security import ROLE_ADMIN, ROLE_STUDENT, AuthContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/maintenance", tags=["maintenance"])


def _target_student(ctx: AuthContext, student_id: str | None) -> str:
    if ctx.role == ROLE_ADMIN:
        if not student_id:
            raise ValidationFailedError("student_id is required", details={"student_id": "must not be empty"})
        return student_id
    if student_id and student_id != ctx.subject:
        raise UnauthorizedError("students may only inspect their own references")
    return ctx.subject


@router.get("/references/audit")
def audit_references(request: Request, student_id: str | None = Query(default=None)):
    ctx = auth_from_request(request, ROLE_STUDENT, ROLE_ADMIN)
    target = _target_student(ctx, student_id)
    found = services_from_request(request).repair.audit(target)
    return success_envelope(
        {"student_id": target, "items": [x.to_dict() for x in found], "total": len(found)},
        trace_id_from_request(request),
    )


@router.post("/references/repair")
def repair_references(payload: RepairRequest, request: Request):
    ctx = auth_from_request(request, ROLE_STUDENT, ROLE_ADMIN)
    target = _target_student(ctx, payload.student_id)
    logger.info(
        "reference_repair_requested student_id=%s actor=%s dry_run=%s",
        target,
        ctx.subject,
        payload.dry_run,
    )
    report = services_from_request(request).repair.repair(target, dry_run=payload.dry_run)
    return success_envelope(report.to_dict(), trace_id_from_request(request), message="repair completed")
