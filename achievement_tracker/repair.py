"""Cross-store reference consistency: audit, two-pass repair and tolerant lookup.

Achievements and their references live in independent stores, so a crash or
timeout between the two writes of create/soft-delete leaves one of:

* an achievement that no reference points at (``missing_reference``),
* a reference whose pointer resolves to nothing (``dangling_reference``),
* a ``draft`` reference to a soft-deleted achievement (``stale_status``).

Matching a dangling reference to its achievement uses creation-time
proximity. It is a best-effort heuristic: an achievement that another
reference already claims is never reassigned, so an ambiguous case is left
unresolved for manual inspection instead of being guessed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Protocol

from achievement_tracker.errors import NotFoundError, StoreUnavailableError, call_store
from achievement_tracker.models import Achievement, AchievementReference, utcnow
from achievement_tracker.status import DELETED, DRAFT

logger = logging.getLogger(__name__)

DANGLING_REFERENCE = "dangling_reference"
MISSING_REFERENCE = "missing_reference"
DUPLICATE_REFERENCE = "duplicate_reference"
STALE_STATUS = "stale_status"
ORPHANED_REFERENCE = "orphaned_reference"

ACTION_STATUS_SYNCED = "status_synced"
ACTION_POINTER_HEALED = "pointer_healed"
ACTION_REFERENCE_CREATED = "reference_created"


class AchievementStore(Protocol):
    def get(self, achievement_id: str, *, include_deleted: bool = True) -> Achievement | None: ...

    def list_by_student(self, student_id: str, *, include_deleted: bool = False) -> list[Achievement]: ...


class ReferenceStore(Protocol):
    def create(self, reference: AchievementReference) -> AchievementReference: ...

    def update(self, reference: AchievementReference) -> AchievementReference: ...

    def get_by_achievement_id(self, achievement_id: str) -> AchievementReference | None: ...

    def list_by_student(self, student_id: str) -> list[AchievementReference]: ...


@dataclass
class Inconsistency:
    kind: str
    student_id: str
    reference_id: str | None = None
    achievement_id: str | None = None
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "student_id": self.student_id,
            "reference_id": self.reference_id,
            "achievement_id": self.achievement_id,
            "detail": self.detail,
        }


@dataclass
class RepairFix:
    action: str
    reference_id: str | None
    achievement_id: str
    field: str
    old_value: str | None
    new_value: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "reference_id": self.reference_id,
            "achievement_id": self.achievement_id,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
        }


@dataclass
class RepairReport:
    student_id: str
    dry_run: bool = False
    fixes: list[RepairFix] = field(default_factory=list)
    unresolved: list[Inconsistency] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "dry_run": self.dry_run,
            "fixes": [x.to_dict() for x in self.fixes],
            "unresolved": [x.to_dict() for x in self.unresolved],
            "failed": list(self.failed),
            "summary": {
                "fixed": len(self.fixes),
                "unresolved": len(self.unresolved),
                "failed": len(self.failed),
            },
        }


def _delta_seconds(a: datetime | None, b: datetime | None) -> float | None:
    if a is None or b is None:
        return None
    return abs((a - b).total_seconds())


def _closest(
    reference: AchievementReference,
    candidates: list[Achievement],
    window: timedelta,
) -> Achievement | None:
    best: tuple[float, datetime, str, Achievement] | None = None
    for item in candidates:
        delta = _delta_seconds(reference.created_at, item.created_at)
        if delta is None or delta > window.total_seconds():
            continue
        key = (delta, item.created_at, str(item.id), item)
        if best is None or key[:3] < best[:3]:
            best = key
    return None if best is None else best[3]


class ReferenceRepairEngine:
    def __init__(
        self,
        *,
        achievements: AchievementStore,
        references: ReferenceStore,
        match_window_s: int = 10,
        safe_resolve_window_s: int = 5,
        heal_on_resolve: bool = True,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._achievements = achievements
        self._references = references
        self._match_window = timedelta(seconds=match_window_s)
        self._resolve_window = timedelta(seconds=safe_resolve_window_s)
        self._heal_on_resolve = heal_on_resolve
        self._now = now

    def _load(self, student_id: str) -> tuple[dict[str, Achievement], list[AchievementReference]]:
        achievements = call_store(
            "list_achievements",
            self._achievements.list_by_student,
            student_id,
            include_deleted=True,
        )
        references = call_store("list_references", self._references.list_by_student, student_id)
        by_id = {str(x.id): x for x in achievements}
        references = sorted(references, key=lambda x: (x.created_at is None, x.created_at or datetime.min, str(x.id)))
        return by_id, references

    def audit(self, student_id: str) -> list[Inconsistency]:
        """Read-only diagnostic of one student's achievement/reference pairs."""
        by_id, references = self._load(student_id)
        found: list[Inconsistency] = []
        claims: dict[str, list[str]] = {}
        claimed: set[str] = set()
        for ref in references:
            achievement = by_id.get(ref.achievement_id)
            if achievement is None:
                found.append(
                    Inconsistency(
                        kind=DANGLING_REFERENCE,
                        student_id=student_id,
                        reference_id=ref.id,
                        achievement_id=ref.achievement_id,
                        detail=f"pointer does not resolve (status={ref.status})",
                    )
                )
                continue
            claimed.add(ref.achievement_id)
            if not ref.is_deleted:
                claims.setdefault(ref.achievement_id, []).append(str(ref.id))
            if ref.status == DRAFT and achievement.is_deleted:
                found.append(
                    Inconsistency(
                        kind=STALE_STATUS,
                        student_id=student_id,
                        reference_id=ref.id,
                        achievement_id=ref.achievement_id,
                        detail="draft reference points at a soft-deleted achievement",
                    )
                )
        for achievement_id, ref_ids in claims.items():
            if len(ref_ids) > 1:
                found.append(
                    Inconsistency(
                        kind=DUPLICATE_REFERENCE,
                        student_id=student_id,
                        achievement_id=achievement_id,
                        detail="claimed by " + ",".join(ref_ids),
                    )
                )
        for achievement_id, achievement in by_id.items():
            if achievement.is_deleted or achievement_id in claimed:
                continue
            found.append(
                Inconsistency(
                    kind=MISSING_REFERENCE,
                    student_id=student_id,
                    achievement_id=achievement_id,
                    detail="no reference points at this achievement",
                )
            )
        return found

    def _apply(
        self,
        report: RepairReport,
        fix: RepairFix,
        write: Callable[[], AchievementReference],
    ) -> AchievementReference | None:
        if report.dry_run:
            report.fixes.append(fix)
            return None
        try:
            saved = write()
        except StoreUnavailableError as exc:
            logger.warning(
                "reference_repair_failed action=%s reference_id=%s achievement_id=%s error=%s",
                fix.action,
                fix.reference_id,
                fix.achievement_id,
                exc.message,
            )
            report.failed.append({**fix.to_dict(), "error": exc.message})
            return None
        if fix.action == ACTION_REFERENCE_CREATED:
            fix = replace(fix, reference_id=saved.id, new_value=saved.id)
        report.fixes.append(fix)
        logger.info(
            "reference_repair_fix action=%s reference_id=%s achievement_id=%s field=%s old=%s new=%s",
            fix.action,
            fix.reference_id,
            fix.achievement_id,
            fix.field,
            fix.old_value,
            fix.new_value,
        )
        return saved

    def repair(self, student_id: str, *, dry_run: bool = False) -> RepairReport:
        by_id, references = self._load(student_id)
        report = RepairReport(student_id=student_id, dry_run=dry_run)
        now = self._now()

        claimed: set[str] = set()
        claims: dict[str, list[str]] = {}
        dangling: list[AchievementReference] = []
        for ref in references:
            if ref.achievement_id in by_id:
                claimed.add(ref.achievement_id)
                if not ref.is_deleted:
                    claims.setdefault(ref.achievement_id, []).append(str(ref.id))
            else:
                dangling.append(ref)

        # pass 0: a draft left pointing at a soft-deleted achievement
        for ref in references:
            achievement = by_id.get(ref.achievement_id)
            if achievement is None or ref.status != DRAFT or not achievement.is_deleted:
                continue
            synced = replace(ref, status=DELETED, updated_at=now)
            self._apply(
                report,
                RepairFix(
                    action=ACTION_STATUS_SYNCED,
                    reference_id=ref.id,
                    achievement_id=ref.achievement_id,
                    field="status",
                    old_value=ref.status,
                    new_value=DELETED,
                ),
                lambda synced=synced: call_store("update_reference", self._references.update, synced),
            )

        # pass 1: heal dangling pointers, oldest reference first
        for ref in dangling:
            candidates = [
                x
                for x in by_id.values()
                if str(x.id) not in claimed and x.student_id == ref.student_id and x.is_deleted == ref.is_deleted
            ]
            match = _closest(ref, candidates, self._match_window)
            if match is None:
                report.unresolved.append(
                    Inconsistency(
                        kind=ORPHANED_REFERENCE,
                        student_id=student_id,
                        reference_id=ref.id,
                        achievement_id=ref.achievement_id,
                        detail="no unclaimed achievement within the match window",
                    )
                )
                continue
            # claimed even if the write fails, so pass 2 cannot mint a second reference for it
            claimed.add(str(match.id))
            healed = replace(ref, achievement_id=str(match.id), updated_at=now)
            self._apply(
                report,
                RepairFix(
                    action=ACTION_POINTER_HEALED,
                    reference_id=ref.id,
                    achievement_id=str(match.id),
                    field="achievement_id",
                    old_value=ref.achievement_id,
                    new_value=str(match.id),
                ),
                lambda healed=healed: call_store("update_reference", self._references.update, healed),
            )

        # pass 2: live achievements nobody points at get a fresh draft reference
        orphans = sorted(
            (x for x in by_id.values() if not x.is_deleted and str(x.id) not in claimed),
            key=lambda x: (x.created_at or now, str(x.id)),
        )
        for achievement in orphans:
            created = AchievementReference(
                student_id=achievement.student_id,
                achievement_id=str(achievement.id),
                status=DRAFT,
                created_at=achievement.created_at or now,
                updated_at=now,
            )
            self._apply(
                report,
                RepairFix(
                    action=ACTION_REFERENCE_CREATED,
                    reference_id=None,
                    achievement_id=str(achievement.id),
                    field="reference",
                    old_value=None,
                    new_value=None,
                ),
                lambda created=created: call_store("create_reference", self._references.create, created),
            )

        for achievement_id, ref_ids in claims.items():
            if len(ref_ids) > 1:
                report.unresolved.append(
                    Inconsistency(
                        kind=DUPLICATE_REFERENCE,
                        student_id=student_id,
                        achievement_id=achievement_id,
                        detail="claimed by " + ",".join(ref_ids),
                    )
                )

        logger.info(
            "reference_repair_done student_id=%s dry_run=%s fixed=%s unresolved=%s failed=%s",
            student_id,
            dry_run,
            len(report.fixes),
            len(report.unresolved),
            len(report.failed),
        )
        return report

    def safe_resolve_reference(self, achievement_id: str) -> AchievementReference:
        """Direct pointer lookup, falling back to a time-window match among the owner's dangling references.

        A dangling reference is only taken when this achievement is also its own
        closest unclaimed match; anything less certain is left to ``repair``.
        """
        ref = call_store("get_reference_by_achievement", self._references.get_by_achievement_id, achievement_id)
        if ref is not None:
            return ref
        achievement = call_store("get_achievement", self._achievements.get, achievement_id, include_deleted=True)
        if achievement is None:
            raise NotFoundError(f"achievement not found: {achievement_id}", code="ACHIEVEMENT_NOT_FOUND")

        owned = call_store(
            "list_achievements",
            self._achievements.list_by_student,
            achievement.student_id,
            include_deleted=True,
        )
        known = {str(x.id) for x in owned}
        known.add(achievement_id)
        refs = call_store("list_references", self._references.list_by_student, achievement.student_id)
        claimed = {x.achievement_id for x in refs if x.achievement_id in known}
        unclaimed = [x for x in owned if str(x.id) not in claimed]
        if achievement_id not in {str(x.id) for x in unclaimed}:
            unclaimed.append(achievement)

        candidates: list[tuple[float, AchievementReference]] = []
        for item in refs:
            if item.achievement_id in known or item.is_deleted != achievement.is_deleted:
                continue
            delta = _delta_seconds(item.created_at, achievement.created_at)
            if delta is None or delta > self._resolve_window.total_seconds():
                continue
            candidates.append((delta, item))
        candidates.sort(key=lambda x: (x[0], str(x[1].id)))

        best: AchievementReference | None = None
        for _delta, item in candidates:
            match = _closest(item, [x for x in unclaimed if x.is_deleted == item.is_deleted], self._resolve_window)
            if match is not None and str(match.id) == achievement_id:
                best = item
                break
            logger.info(
                "reference_lazy_heal_skipped reference_id=%s achievement_id=%s closer_match=%s",
                item.id,
                achievement_id,
                None if match is None else match.id,
            )
        if best is None:
            raise NotFoundError(
                f"reference not found for achievement: {achievement_id}",
                code="REFERENCE_NOT_FOUND",
            )
        if not self._heal_on_resolve:
            return best

        healed = replace(best, achievement_id=achievement_id, updated_at=self._now())
        try:
            saved = call_store("update_reference", self._references.update, healed)
        except StoreUnavailableError as exc:
            logger.warning(
                "reference_lazy_heal_failed reference_id=%s achievement_id=%s error=%s",
                best.id,
                achievement_id,
                exc.message,
            )
            return healed
        logger.info(
            "reference_lazy_heal reference_id=%s old=%s new=%s",
            best.id,
            best.achievement_id,
            achievement_id,
        )
        return saved
