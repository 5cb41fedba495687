from __future__ import annotations

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from achievement_tracker.config import Settings
from achievement_tracker.errors import ApiError, ValidationFailedError
from achievement_tracker.logging_setup import configure_logging
from achievement_tracker.routes import achievements, maintenance, notifications, verifications
from achievement_tracker.routes._deps import error_response, request_id_from_request, trace_id_from_request
from achievement_tracker.schemas import success_envelope
from achievement_tracker.security import (
    ROLES,
    AuthContext,
    JwtSecurityConfig,
    parse_and_validate_bearer_token,
)
from achievement_tracker.services import Services, build_services

logger = logging.getLogger(__name__)


def _dev_auth_context(request: Request) -> AuthContext | None:
    # only reachable when no JWT settings are configured
    subject = request.headers.get("x-user-id", "").strip()
    role = request.headers.get("x-user-role", "").strip().lower()
    if not subject or role not in ROLES:
        return None
    return AuthContext(subject=subject, role=role, claims={})


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    cfg = settings or Settings.from_env()
    configure_logging(cfg.log_level)
    app = FastAPI(title="Achievement Tracker API", version="0.1.0")
    security_cfg = JwtSecurityConfig.from_env()
    app.state.settings = cfg
    app.state.security_cfg = security_cfg
    app.state.services = services or build_services(cfg)
    if cfg.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cfg.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def add_trace_id(request: Request, call_next):
        incoming_trace_id = request.headers.get("x-trace-id", "").strip()
        request.state.trace_id = incoming_trace_id or uuid.uuid4().hex
        request.state.request_id = request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")
        request.state.auth = None
        try:
            if request.url.path.startswith("/api/v1/"):
                if security_cfg.enabled:
                    request.state.auth = parse_and_validate_bearer_token(
                        authorization=request.headers.get("Authorization"),
                        cfg=security_cfg,
                    )
                else:
                    request.state.auth = _dev_auth_context(request)
            response = await call_next(request)
        except ApiError as exc:
            logger.warning(
                "auth_blocked path=%s code=%s trace_id=%s",
                request.url.path,
                exc.code,
                trace_id_from_request(request),
            )
            response = error_response(
                request,
                code=exc.code,
                message=exc.message,
                error_class=exc.error_class,
                retryable=exc.retryable,
                status_code=exc.http_status,
            )
        response.headers["x-trace-id"] = trace_id_from_request(request)
        response.headers["x-request-id"] = request_id_from_request(request)
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.retryable:
            logger.warning("request_failed code=%s path=%s message=%s", exc.code, request.url.path, exc.message)
        details = exc.details if isinstance(exc, ValidationFailedError) and exc.details else None
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
            details=details,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        details = {
            ".".join(str(x) for x in err.get("loc", ()) if x != "body"): str(err.get("msg", ""))
            for err in exc.errors()
        }
        return error_response(
            request,
            code="REQ_VALIDATION_FAILED",
            message="invalid payload",
            error_class="validation",
            retryable=False,
            status_code=400,
            details=details,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="REQ_NOT_FOUND",
                message="resource not found",
                error_class="validation",
                retryable=False,
                status_code=404,
            )
        return error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        return success_envelope(
            {"status": "ok", "store_backend": cfg.store_backend},
            trace_id_from_request(request),
        )

    app.include_router(achievements.router)
    app.include_router(verifications.router)
    app.include_router(notifications.router)
    app.include_router(maintenance.router)
    return app
