from __future__ import annotations

import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

from achievement_tracker.errors import ApiError
from achievement_tracker.schemas import error_envelope
from achievement_tracker.security import AuthContext, require_role
from achievement_tracker.services import Services


def trace_id_from_request(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return uuid.uuid4().hex


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return f"req_{uuid.uuid4().hex[:12]}"


def services_from_request(request: Request) -> Services:
    return request.app.state.services


def auth_from_request(request: Request, *roles: str) -> AuthContext:
    ctx = getattr(request.state, "auth", None)
    if ctx is None:
        raise ApiError(
            code="AUTH_UNAUTHORIZED",
            message="authentication required",
            error_class="security_sensitive",
            retryable=False,
            http_status=401,
        )
    if roles:
        require_role(ctx, *roles)
    return ctx


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
    details: dict[str, object] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=trace_id_from_request(request),
            details=details,
        ),
    )
