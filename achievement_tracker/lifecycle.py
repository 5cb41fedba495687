from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Protocol

from achievement_tracker.details import AchievementDetails, ensure_category, parse_details
from achievement_tracker.errors import (
    InvalidStateError,
    NotFoundError,
    StoreUnavailableError,
    UnauthorizedError,
    ValidationFailedError,
    call_store,
)
from achievement_tracker.models import (
    Achievement,
    AchievementReference,
    Attachment,
    CustomField,
    Lecturer,
    Student,
    User,
    utcnow,
)
from achievement_tracker.notifications import (
    KIND_REJECTED,
    KIND_SUBMITTED,
    KIND_VERIFIED,
    NotificationDispatcher,
)
from achievement_tracker.repair import ReferenceRepairEngine
from achievement_tracker.status import (
    ALL_STATUSES,
    DELETED,
    DRAFT,
    REJECTED,
    SUBMITTED,
    VERIFICATION_DECISIONS,
    ensure_transition,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class IdentityStore(Protocol):
    def get_user_by_id(self, user_id: str) -> User | None: ...

    def get_student_by_user_id(self, user_id: str) -> Student | None: ...

    def get_lecturer_by_user_id(self, user_id: str) -> Lecturer | None: ...

    def get_lecturer_by_id(self, lecturer_id: str) -> Lecturer | None: ...

    def get_students_by_advisor_id(self, advisor_id: str) -> list[Student]: ...


@dataclass
class AchievementView:
    achievement: Achievement | None
    reference: AchievementReference | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "achievement": None if self.achievement is None else self.achievement.to_document(),
            "reference": None if self.reference is None else self.reference.to_document(),
        }


@dataclass
class VerificationDetail:
    reference: AchievementReference
    achievement: Achievement
    student: Student
    user: User | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reference": self.reference.to_document(),
            "achievement": self.achievement.to_document(),
            "student": {
                "id": self.student.id,
                "user_id": self.student.user_id,
                "student_number": self.student.student_number,
                "program_study": self.student.program_study,
                "academic_year": self.student.academic_year,
                "full_name": self.user.full_name if self.user else "",
            },
        }


@dataclass
class AchievementPage:
    items: list[AchievementView]
    total: int
    limit: int
    offset: int


def _check_page(limit: int, offset: int, errors: dict[str, str] | None = None) -> None:
    errors = {} if errors is None else errors
    if limit < 1 or limit > MAX_PAGE_SIZE:
        errors["limit"] = f"must be between 1 and {MAX_PAGE_SIZE}"
    if offset < 0:
        errors["offset"] = "must be >= 0"
    if errors:
        raise ValidationFailedError("invalid pagination", details=errors)


def _require_text(errors: dict[str, str], name: str, value: str | None) -> str:
    text = (value or "").strip()
    if not text:
        errors[name] = "must not be empty"
    return text


def _coerce_details(category: str, details: AchievementDetails | dict[str, Any] | None) -> AchievementDetails:
    if details is None:
        return parse_details(category, {})
    if isinstance(details, dict):
        return parse_details(category, details)
    if details.category != category:
        raise ValidationFailedError(
            "details category does not match achievement category",
            details={"details.category": f"expected {category}"},
        )
    return details


def _coerce_attachments(items: list[Attachment | dict[str, Any]] | None) -> list[Attachment]:
    return [x if isinstance(x, Attachment) else Attachment.from_document(x) for x in items or []]


def _coerce_custom_fields(items: list[CustomField | dict[str, Any]] | None) -> list[CustomField]:
    return [
        x if isinstance(x, CustomField) else CustomField(name=str(x.get("name", "")), value=x.get("value"))
        for x in items or []
    ]


class AchievementLifecycle:
    """Create/submit/verify/soft-delete over two stores that share no transaction."""

    def __init__(
        self,
        *,
        identity: IdentityStore,
        achievements: Any,
        references: Any,
        repair: ReferenceRepairEngine,
        notifier: NotificationDispatcher,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._identity = identity
        self._achievements = achievements
        self._references = references
        self._repair = repair
        self._notifier = notifier
        self._now = now

    def _student(self, user_id: str) -> Student:
        student = call_store("get_student", self._identity.get_student_by_user_id, user_id)
        if student is None:
            raise NotFoundError(f"student not found: {user_id}", code="STUDENT_NOT_FOUND")
        return student

    def _lecturer(self, user_id: str) -> Lecturer:
        lecturer = call_store("get_lecturer", self._identity.get_lecturer_by_user_id, user_id)
        if lecturer is None:
            raise NotFoundError(f"lecturer not found: {user_id}", code="LECTURER_NOT_FOUND")
        return lecturer

    def _require_advisor(self, lecturer_id: str, student_user_id: str) -> Student:
        # advisor_id holds the lecturer profile id, not the lecturer's user id
        student = self._student(student_user_id)
        lecturer = call_store("get_lecturer", self._identity.get_lecturer_by_user_id, lecturer_id)
        if lecturer is None:
            raise UnauthorizedError("caller has no lecturer profile")
        if student.advisor_id != lecturer.id:
            raise UnauthorizedError("lecturer is not the advisor of this student")
        return student

    def _owned_achievement(self, student_id: str, achievement_id: str) -> Achievement:
        achievement = call_store("get_achievement", self._achievements.get, achievement_id, include_deleted=True)
        if achievement is None:
            raise NotFoundError(f"achievement not found: {achievement_id}", code="ACHIEVEMENT_NOT_FOUND")
        if achievement.student_id != student_id:
            raise UnauthorizedError("achievement belongs to another student")
        return achievement

    def _notify_advisor(self, student_id: str, reference: AchievementReference, title: str) -> None:
        try:
            student = self._student(student_id)
            if not student.advisor_id:
                logger.info("submit_notification_skipped student_id=%s reason=no_advisor", student_id)
                return
            lecturer = call_store("get_lecturer", self._identity.get_lecturer_by_id, student.advisor_id)
        except (NotFoundError, StoreUnavailableError) as exc:
            logger.warning("submit_notification_failed student_id=%s error=%s", student_id, exc.message)
            return
        if lecturer is None:
            logger.warning("submit_notification_failed student_id=%s error=advisor_missing", student_id)
            return
        self._notifier.notify(
            lecturer.user_id,
            KIND_SUBMITTED,
            "Achievement submitted for verification",
            f"A student submitted '{title}' for verification.",
            {"reference_id": reference.id, "achievement_id": reference.achievement_id, "student_id": student_id},
        )

    def create(
        self,
        student_id: str,
        category: str,
        title: str,
        description: str,
        details: AchievementDetails | dict[str, Any] | None = None,
        attachments: list[Attachment | dict[str, Any]] | None = None,
        tags: list[str] | None = None,
        custom_fields: list[CustomField | dict[str, Any]] | None = None,
    ) -> tuple[Achievement, AchievementReference]:
        category = ensure_category(category)
        errors: dict[str, str] = {}
        title_text = _require_text(errors, "title", title)
        description_text = _require_text(errors, "description", description)
        if errors:
            raise ValidationFailedError("invalid achievement", details=errors)
        parsed = _coerce_details(category, details)
        self._student(student_id)

        now = self._now()
        achievement = call_store(
            "create_achievement",
            self._achievements.create,
            Achievement(
                student_id=student_id,
                category=category,
                title=title_text,
                description=description_text,
                details=parsed,
                custom_fields=_coerce_custom_fields(custom_fields),
                attachments=_coerce_attachments(attachments),
                tags=[str(x) for x in tags or []],
                created_at=now,
                updated_at=now,
            ),
        )
        try:
            reference = call_store(
                "create_reference",
                self._references.create,
                AchievementReference(
                    student_id=student_id,
                    achievement_id=str(achievement.id),
                    status=DRAFT,
                    created_at=now,
                    updated_at=now,
                ),
            )
        except StoreUnavailableError as exc:
            self._compensate_create(str(achievement.id))
            raise StoreUnavailableError(
                "achievement creation failed: reference not written",
                code="ACH_CREATE_FAILED",
            ) from exc
        logger.info(
            "achievement_created achievement_id=%s reference_id=%s student_id=%s",
            achievement.id,
            reference.id,
            student_id,
        )
        return achievement, reference

    def _compensate_create(self, achievement_id: str) -> None:
        logger.warning("create_compensation_attempt achievement_id=%s", achievement_id)
        try:
            call_store("delete_achievement", self._achievements.delete, achievement_id)
        except StoreUnavailableError as exc:
            logger.error(
                "create_compensation_failed achievement_id=%s error=%s",
                achievement_id,
                exc.message,
            )

    def submit(self, student_id: str, achievement_id: str) -> AchievementReference:
        # ownership is settled before resolving, which may heal a pointer
        achievement = call_store("get_achievement", self._achievements.get, achievement_id, include_deleted=True)
        if achievement is None or achievement.student_id != student_id:
            raise NotFoundError(f"achievement not found: {achievement_id}", code="ACHIEVEMENT_NOT_FOUND")
        reference = self._repair.safe_resolve_reference(achievement_id)
        if reference.student_id != student_id:
            raise NotFoundError(f"reference not found for achievement: {achievement_id}", code="REFERENCE_NOT_FOUND")
        ensure_transition(reference.status, SUBMITTED)
        if achievement.is_deleted:
            raise InvalidStateError("achievement is deleted")

        now = self._now()
        updated = call_store(
            "update_reference",
            self._references.update,
            replace(reference, status=SUBMITTED, submitted_at=now, updated_at=now),
        )
        self._notify_advisor(student_id, updated, achievement.title)
        return updated

    def verify(
        self,
        lecturer_id: str,
        reference_id: str,
        decision: str,
        rejection_note: str | None = None,
    ) -> AchievementReference:
        if decision not in VERIFICATION_DECISIONS:
            raise ValidationFailedError(
                f"unsupported decision: {decision}",
                details={"decision": "must be verified or rejected"},
            )
        note = rejection_note or ""
        if decision == REJECTED and not note.strip():
            raise ValidationFailedError(
                "rejection note is required",
                details={"rejection_note": "must not be empty when rejecting"},
            )
        reference = call_store("get_reference", self._references.get, reference_id)
        if reference is None:
            raise NotFoundError(f"reference not found: {reference_id}", code="REFERENCE_NOT_FOUND")
        self._require_advisor(lecturer_id, reference.student_id)
        ensure_transition(reference.status, decision)

        now = self._now()
        updated = call_store(
            "update_reference",
            self._references.update,
            replace(
                reference,
                status=decision,
                verified_by=lecturer_id,
                verified_at=now,
                rejection_note=note if decision == REJECTED else None,
                updated_at=now,
            ),
        )
        data = {"reference_id": updated.id, "achievement_id": updated.achievement_id}
        if decision == REJECTED:
            self._notifier.notify(
                updated.student_id,
                KIND_REJECTED,
                "Achievement rejected",
                f"Your achievement was rejected: {note}",
                {**data, "rejection_note": note},
            )
        else:
            self._notifier.notify(
                updated.student_id,
                KIND_VERIFIED,
                "Achievement verified",
                "Your achievement was verified by your advisor.",
                data,
            )
        return updated

    def reject(self, lecturer_id: str, reference_id: str, rejection_note: str) -> AchievementReference:
        return self.verify(lecturer_id, reference_id, REJECTED, rejection_note)

    def soft_delete(self, student_id: str, achievement_id: str) -> Achievement:
        achievement = self._owned_achievement(student_id, achievement_id)
        if achievement.is_deleted:
            raise InvalidStateError("achievement already deleted")
        reference = self._repair.safe_resolve_reference(achievement_id)
        ensure_transition(reference.status, DELETED)

        now = self._now()
        deleted = call_store(
            "update_achievement",
            self._achievements.update,
            replace(achievement, deleted_at=now, updated_at=now),
        )
        try:
            call_store(
                "update_reference",
                self._references.update,
                replace(reference, status=DELETED, updated_at=now),
            )
        except StoreUnavailableError as exc:
            # left as a stale draft reference for repair
            logger.error(
                "soft_delete_reference_update_failed achievement_id=%s reference_id=%s error=%s",
                achievement_id,
                reference.id,
                exc.message,
            )
        return deleted

    def update_draft(
        self,
        student_id: str,
        achievement_id: str,
        *,
        category: str | None = None,
        title: str | None = None,
        description: str | None = None,
        details: AchievementDetails | dict[str, Any] | None = None,
        attachments: list[Attachment | dict[str, Any]] | None = None,
        tags: list[str] | None = None,
        custom_fields: list[CustomField | dict[str, Any]] | None = None,
    ) -> Achievement:
        achievement = self._owned_achievement(student_id, achievement_id)
        if achievement.is_deleted:
            raise InvalidStateError("achievement is deleted")
        reference = self._repair.safe_resolve_reference(achievement_id)
        if reference.status != DRAFT:
            raise InvalidStateError(f"only draft achievements can be updated (status={reference.status})")
        new_category = ensure_category(category or achievement.category)
        errors: dict[str, str] = {}
        new_title = achievement.title if title is None else _require_text(errors, "title", title)
        new_description = (
            achievement.description if description is None else _require_text(errors, "description", description)
        )
        if errors:
            raise ValidationFailedError("invalid achievement", details=errors)
        if details is None and new_category == achievement.category:
            new_details = achievement.details
        else:
            new_details = _coerce_details(new_category, details)

        updated = replace(
            achievement,
            category=new_category,
            title=new_title,
            description=new_description,
            details=new_details,
            attachments=achievement.attachments if attachments is None else _coerce_attachments(attachments),
            tags=achievement.tags if tags is None else [str(x) for x in tags],
            custom_fields=(
                achievement.custom_fields if custom_fields is None else _coerce_custom_fields(custom_fields)
            ),
            updated_at=self._now(),
        )
        return call_store("update_achievement", self._achievements.update, updated)

    def _reference_or_none(self, achievement_id: str) -> AchievementReference | None:
        try:
            return self._repair.safe_resolve_reference(achievement_id)
        except NotFoundError:
            return None

    def list_student_achievements(self, student_id: str) -> list[AchievementView]:
        self._student(student_id)
        achievements = call_store("list_achievements", self._achievements.list_by_student, student_id)
        references = call_store("list_references", self._references.list_by_student, student_id)
        by_pointer: dict[str, AchievementReference] = {}
        for ref in references:
            if not ref.is_deleted:
                by_pointer.setdefault(ref.achievement_id, ref)
        return [
            AchievementView(achievement=x, reference=by_pointer.get(str(x.id)) or self._reference_or_none(str(x.id)))
            for x in achievements
        ]

    def list_student_references(self, student_id: str) -> list[AchievementReference]:
        self._student(student_id)
        return call_store("list_references", self._references.list_by_student, student_id)

    def get_achievement_for_viewer(self, viewer_id: str, achievement_id: str) -> AchievementView:
        """Owners see their own records, soft-deleted included; advisors only see live ones."""
        achievement = call_store("get_achievement", self._achievements.get, achievement_id, include_deleted=True)
        if achievement is None or (achievement.is_deleted and achievement.student_id != viewer_id):
            raise NotFoundError(f"achievement not found: {achievement_id}", code="ACHIEVEMENT_NOT_FOUND")
        if achievement.student_id != viewer_id:
            self._require_advisor(viewer_id, achievement.student_id)
        return AchievementView(achievement=achievement, reference=self._reference_or_none(achievement_id))

    def pending_verifications(self, lecturer_id: str) -> list[AchievementView]:
        lecturer = self._lecturer(lecturer_id)
        advisees = call_store("list_advisees", self._identity.get_students_by_advisor_id, lecturer.id)
        user_ids = {x.user_id for x in advisees}
        if not user_ids:
            return []
        submitted = call_store("list_references", self._references.list_by_status, SUBMITTED)
        views: list[AchievementView] = []
        for ref in submitted:
            if ref.student_id not in user_ids:
                continue
            achievement = call_store(
                "get_achievement",
                self._achievements.get,
                ref.achievement_id,
                include_deleted=False,
            )
            views.append(AchievementView(achievement=achievement, reference=ref))
        return views

    def verification_detail(self, lecturer_id: str, reference_id: str) -> VerificationDetail:
        reference = call_store("get_reference", self._references.get, reference_id)
        if reference is None:
            raise NotFoundError(f"reference not found: {reference_id}", code="REFERENCE_NOT_FOUND")
        student = self._require_advisor(lecturer_id, reference.student_id)
        achievement = call_store(
            "get_achievement",
            self._achievements.get,
            reference.achievement_id,
            include_deleted=False,
        )
        if achievement is None:
            raise NotFoundError(
                f"achievement not found: {reference.achievement_id}",
                code="ACHIEVEMENT_NOT_FOUND",
            )
        user = call_store("get_user", self._identity.get_user_by_id, reference.student_id)
        return VerificationDetail(reference=reference, achievement=achievement, student=student, user=user)

    def advisee_achievements(self, lecturer_id: str, *, limit: int = 10, offset: int = 0) -> AchievementPage:
        _check_page(limit, offset)
        lecturer = self._lecturer(lecturer_id)
        advisees = call_store("list_advisees", self._identity.get_students_by_advisor_id, lecturer.id)
        user_ids = [x.user_id for x in advisees]
        if not user_ids:
            return AchievementPage(items=[], total=0, limit=limit, offset=offset)
        rows = call_store(
            "list_achievements",
            self._achievements.list_by_students,
            user_ids,
            limit=limit,
            offset=offset,
        )
        total = call_store("count_achievements", self._achievements.count_by_students, user_ids)
        return AchievementPage(
            items=[AchievementView(achievement=x, reference=self._reference_or_none(str(x.id))) for x in rows],
            total=total,
            limit=limit,
            offset=offset,
        )

    def list_all_achievements(
        self,
        *,
        limit: int = 10,
        offset: int = 0,
        status: str | None = None,
        category: str | None = None,
        student_id: str | None = None,
    ) -> AchievementPage:
        """Admin listing across all students, joined from references to their live documents."""
        errors: dict[str, str] = {}
        if status is not None and status not in ALL_STATUSES:
            errors["status"] = f"valid options: {', '.join(ALL_STATUSES)}"
        _check_page(limit, offset, errors)
        if category is not None:
            category = ensure_category(category)

        references = call_store(
            "list_references",
            self._references.list_filtered,
            status=status,
            student_id=student_id,
        )
        by_pointer: dict[str, AchievementReference] = {}
        for ref in references:
            current = by_pointer.get(ref.achievement_id)
            if current is None or (current.is_deleted and not ref.is_deleted):
                by_pointer[ref.achievement_id] = ref
        achievements = call_store(
            "get_achievements",
            self._achievements.get_many,
            list(by_pointer),
            include_deleted=False,
        )
        rows = [x for x in achievements if category is None or x.category == category]
        rows.sort(key=lambda x: (x.created_at is None, x.created_at or datetime.min), reverse=True)
        page = rows[offset : offset + limit]
        return AchievementPage(
            items=[AchievementView(achievement=x, reference=by_pointer[str(x.id)]) for x in page],
            total=len(rows),
            limit=limit,
            offset=offset,
        )
