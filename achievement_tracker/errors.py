from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status


class NotFoundError(ApiError):
    """Identity, achievement or reference is absent."""

    def __init__(self, message: str, *, code: str = "ACH_NOT_FOUND") -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="validation",
            retryable=False,
            http_status=404,
        )


class InvalidStateError(ApiError):
    def __init__(self, message: str, *, code: str = "ACH_STATE_TRANSITION_INVALID") -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="business_rule",
            retryable=False,
            http_status=409,
        )


class UnauthorizedError(ApiError):
    """Ownership or advisor relationship check failed."""

    def __init__(self, message: str, *, code: str = "ACH_FORBIDDEN") -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="security_sensitive",
            retryable=False,
            http_status=403,
        )


class ValidationFailedError(ApiError):
    def __init__(
        self,
        message: str,
        *,
        code: str = "ACH_VALIDATION_FAILED",
        details: dict[str, str] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="validation",
            retryable=False,
            http_status=400,
        )
        self.details = dict(details or {})


class StoreUnavailableError(ApiError):
    def __init__(self, message: str, *, code: str = "ACH_STORE_UNAVAILABLE") -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="transient",
            retryable=True,
            http_status=503,
        )


def call_store(operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run one adapter call, classifying unexpected adapter failures as StoreUnavailableError."""
    try:
        return fn(*args, **kwargs)
    except ApiError:
        raise
    except Exception as exc:
        raise StoreUnavailableError(f"{operation} failed: {type(exc).__name__}") from exc
