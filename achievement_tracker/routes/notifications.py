from __future__ import annotations

from fastapi import APIRouter, Request

from achievement_tracker.errors import NotFoundError, call_store
from achievement_tracker.routes._deps import auth_from_request, services_from_request, trace_id_from_request
from achievement_tracker.schemas import success_envelope

router = APIRouter(prefix="/api/v1", tags=["notifications"])


@router.get("/notifications")
def list_notifications(request: Request):
    ctx = auth_from_request(request)
    items = call_store("list_notifications", services_from_request(request).notifications.list_by_user, ctx.subject)
    return success_envelope(
        {"items": [x.to_document() for x in items], "total": len(items)},
        trace_id_from_request(request),
    )


@router.get("/notifications/unread-count")
def unread_count(request: Request):
    ctx = auth_from_request(request)
    count = call_store("count_unread", services_from_request(request).notifications.count_unread, ctx.subject)
    return success_envelope({"unread": count}, trace_id_from_request(request))


@router.put("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, request: Request):
    ctx = auth_from_request(request)
    item = call_store(
        "mark_notification_read",
        services_from_request(request).notifications.mark_read,
        notification_id,
        ctx.subject,
    )
    # another user's notification is reported the same as a missing one
    if item is None:
        raise NotFoundError(f"notification not found: {notification_id}", code="NOTIFICATION_NOT_FOUND")
    return success_envelope(item.to_document(), trace_id_from_request(request), message="notification marked read")
