from __future__ import annotations

from fastapi import APIRouter, Query, Request

from achievement_tracker.routes._deps import auth_from_request, services_from_request, trace_id_from_request
from achievement_tracker.schemas import VerificationDecisionRequest, success_envelope
from achievement_tracker.security import ROLE_LECTURER

router = APIRouter(prefix="/api/v1", tags=["verifications"])


@router.get("/verifications/pending")
def list_pending_verifications(request: Request):
    ctx = auth_from_request(request, ROLE_LECTURER)
    views = services_from_request(request).lifecycle.pending_verifications(ctx.subject)
    return success_envelope(
        {"items": [x.to_dict() for x in views], "total": len(views)},
        trace_id_from_request(request),
    )


@router.get("/verifications/{reference_id}")
def get_verification_detail(reference_id: str, request: Request):
    ctx = auth_from_request(request, ROLE_LECTURER)
    detail = services_from_request(request).lifecycle.verification_detail(ctx.subject, reference_id)
    return success_envelope(detail.to_dict(), trace_id_from_request(request))


@router.post("/verifications/{reference_id}")
def decide_verification(reference_id: str, payload: VerificationDecisionRequest, request: Request):
    ctx = auth_from_request(request, ROLE_LECTURER)
    reference = services_from_request(request).lifecycle.verify(
        ctx.subject,
        reference_id,
        payload.decision,
        payload.rejection_note,
    )
    return success_envelope(
        reference.to_document(),
        trace_id_from_request(request),
        message=f"achievement {payload.decision}",
    )


@router.get("/advisees/achievements")
def list_advisee_achievements(
    request: Request,
    limit: int = Query(default=10),
    offset: int = Query(default=0),
):
    ctx = auth_from_request(request, ROLE_LECTURER)
    page = services_from_request(request).lifecycle.advisee_achievements(ctx.subject, limit=limit, offset=offset)
    return success_envelope(
        {
            "items": [x.to_dict() for x in page.items],
            "total": page.total,
            "limit": page.limit,
            "offset": page.offset,
        },
        trace_id_from_request(request),
    )
