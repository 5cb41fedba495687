from __future__ import annotations

import logging
from typing import Any, Protocol

from achievement_tracker.models import Notification

logger = logging.getLogger(__name__)

KIND_SUBMITTED = "achievement_submitted"
KIND_VERIFIED = "achievement_verified"
KIND_REJECTED = "achievement_rejected"


class NotificationSink(Protocol):
    def create(self, notification: Notification) -> Notification: ...


class NotificationDispatcher:
    """Fire-and-forget delivery: a failing sink is logged, never raised to the caller."""

    def __init__(self, sink: NotificationSink) -> None:
        self._sink = sink

    def notify(
        self,
        user_id: str,
        kind: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> bool:
        if not user_id:
            logger.warning("notification_skipped kind=%s reason=missing_recipient", kind)
            return False
        try:
            self._sink.create(
                Notification(
                    user_id=user_id,
                    kind=kind,
                    title=title,
                    message=message,
                    data=dict(data or {}),
                )
            )
        except Exception as exc:
            logger.warning(
                "notification_failed kind=%s user_id=%s error=%s",
                kind,
                user_id,
                type(exc).__name__,
            )
            return False
        return True
