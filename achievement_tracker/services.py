from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from achievement_tracker.config import Settings
from achievement_tracker.db.postgres import PostgresTxRunner
from achievement_tracker.lifecycle import AchievementLifecycle, IdentityStore
from achievement_tracker.models import Lecturer, Student, User, utcnow
from achievement_tracker.notifications import NotificationDispatcher
from achievement_tracker.repair import ReferenceRepairEngine
from achievement_tracker.repositories import (
    InMemoryAchievementsRepository,
    InMemoryIdentityRepository,
    InMemoryNotificationsRepository,
    InMemoryReferencesRepository,
    PostgresAchievementsRepository,
    PostgresIdentityRepository,
    PostgresNotificationsRepository,
    PostgresReferencesRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class InMemoryStores:
    """Backing containers of the memory backend; tests seed and inspect them directly."""

    users: dict[str, User] = field(default_factory=dict)
    students: dict[str, Student] = field(default_factory=dict)
    lecturers: dict[str, Lecturer] = field(default_factory=dict)
    documents: dict[str, dict[str, Any]] = field(default_factory=dict)
    references: dict[str, Any] = field(default_factory=dict)
    notifications: list[Any] = field(default_factory=list)


@dataclass
class Services:
    identity: IdentityStore
    achievements: Any
    references: Any
    notifications: Any
    repair: ReferenceRepairEngine
    lifecycle: AchievementLifecycle


def _wire(
    settings: Settings,
    *,
    identity: IdentityStore,
    achievements: Any,
    references: Any,
    notifications: Any,
    now: Callable[[], datetime],
) -> Services:
    repair = ReferenceRepairEngine(
        achievements=achievements,
        references=references,
        match_window_s=settings.repair_match_window_s,
        safe_resolve_window_s=settings.safe_resolve_window_s,
        heal_on_resolve=settings.safe_resolve_heal,
        now=now,
    )
    lifecycle = AchievementLifecycle(
        identity=identity,
        achievements=achievements,
        references=references,
        repair=repair,
        notifier=NotificationDispatcher(notifications),
        now=now,
    )
    return Services(
        identity=identity,
        achievements=achievements,
        references=references,
        notifications=notifications,
        repair=repair,
        lifecycle=lifecycle,
    )


def build_in_memory_services(
    settings: Settings | None = None,
    *,
    stores: InMemoryStores | None = None,
    now: Callable[[], datetime] = utcnow,
) -> Services:
    cfg = settings or Settings()
    data = stores or InMemoryStores()
    return _wire(
        cfg,
        identity=InMemoryIdentityRepository(data.users, data.students, data.lecturers),
        achievements=InMemoryAchievementsRepository(data.documents),
        references=InMemoryReferencesRepository(data.references),
        notifications=InMemoryNotificationsRepository(data.notifications),
        now=now,
    )


def build_services(settings: Settings, *, now: Callable[[], datetime] = utcnow) -> Services:
    """Construct every store client and adapter explicitly; nothing is process-global."""
    if settings.store_backend == "memory":
        logger.info("services_built backend=memory")
        return build_in_memory_services(settings, now=now)

    missing = [
        name
        for name, dsn in (
            ("ACH_DOCUMENT_STORE_DSN", settings.document_store_dsn),
            ("ACH_REFERENCE_STORE_DSN", settings.reference_store_dsn),
            ("ACH_IDENTITY_STORE_DSN", settings.identity_store_dsn),
        )
        if not dsn
    ]
    if missing:
        raise RuntimeError(f"postgres backend requires {', '.join(missing)} or ACH_POSTGRES_DSN")
    document_runner = PostgresTxRunner(settings.document_store_dsn, timeout_ms=settings.store_timeout_ms)
    reference_runner = PostgresTxRunner(settings.reference_store_dsn, timeout_ms=settings.store_timeout_ms)
    identity_runner = PostgresTxRunner(settings.identity_store_dsn, timeout_ms=settings.store_timeout_ms)
    logger.info("services_built backend=postgres timeout_ms=%s", settings.store_timeout_ms)
    return _wire(
        settings,
        identity=PostgresIdentityRepository(tx_runner=identity_runner),
        achievements=PostgresAchievementsRepository(tx_runner=document_runner),
        references=PostgresReferencesRepository(tx_runner=reference_runner),
        notifications=PostgresNotificationsRepository(tx_runner=reference_runner),
        now=now,
    )
