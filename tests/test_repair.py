from __future__ import annotations

import logging
from collections import Counter
from datetime import UTC, datetime, timedelta

import pytest

from achievement_tracker.details import parse_details
from achievement_tracker.errors import NotFoundError
from achievement_tracker.models import Achievement, AchievementReference
from achievement_tracker.repair import (
    ACTION_POINTER_HEALED,
    ACTION_REFERENCE_CREATED,
    ACTION_STATUS_SYNCED,
    DANGLING_REFERENCE,
    DUPLICATE_REFERENCE,
    MISSING_REFERENCE,
    ORPHANED_REFERENCE,
    STALE_STATUS,
    ReferenceRepairEngine,
)
from achievement_tracker.repositories import InMemoryAchievementsRepository, InMemoryReferencesRepository
from achievement_tracker.status import DELETED, DRAFT, SUBMITTED

BASE_TIME = datetime(2024, 3, 1, 9, 0, 0, tzinfo=UTC)


def _at(seconds: float):
    return BASE_TIME + timedelta(seconds=seconds)


def _achievement(services, *, offset_s: float, student_id: str = "u_stu_1", deleted: bool = False) -> Achievement:
    return services.achievements.create(
        Achievement(
            student_id=student_id,
            category="academic",
            title=f"Cert at {offset_s}",
            description="Certification",
            details=parse_details("academic", {"certification_name": "CCNA"}),
            created_at=_at(offset_s),
            updated_at=_at(offset_s),
            deleted_at=_at(offset_s + 30) if deleted else None,
        )
    )


def _reference(
    services,
    *,
    achievement_id: str,
    offset_s: float,
    status: str = DRAFT,
    student_id: str = "u_stu_1",
) -> AchievementReference:
    return services.references.create(
        AchievementReference(
            student_id=student_id,
            achievement_id=achievement_id,
            status=status,
            created_at=_at(offset_s),
            updated_at=_at(offset_s),
        )
    )


def _assert_unique_live_pointers(services, student_id: str = "u_stu_1") -> None:
    live = [x.achievement_id for x in services.references.list_by_student(student_id) if x.status != DELETED]
    assert all(count == 1 for count in Counter(live).values())


def test_audit_of_consistent_student_is_empty(services, lifecycle):
    lifecycle.create("u_stu_1", "research", "Paper", "Journal paper", {"publication_title": "Graphs"})

    assert services.repair.audit("u_stu_1") == []


def test_audit_reports_each_inconsistency_kind(services):
    live = _achievement(services, offset_s=0)
    _reference(services, achievement_id=live.id, offset_s=0)
    _reference(services, achievement_id=live.id, offset_s=1, status=SUBMITTED)
    _reference(services, achievement_id="gone", offset_s=100)
    _achievement(services, offset_s=500)
    soft = _achievement(services, offset_s=900, deleted=True)
    _reference(services, achievement_id=soft.id, offset_s=900)

    kinds = Counter(x.kind for x in services.repair.audit("u_stu_1"))

    assert kinds == Counter(
        {
            DUPLICATE_REFERENCE: 1,
            DANGLING_REFERENCE: 1,
            MISSING_REFERENCE: 1,
            STALE_STATUS: 1,
        }
    )


def test_audit_writes_nothing(services, stores):
    _reference(services, achievement_id="gone", offset_s=0)
    _achievement(services, offset_s=3)
    before = (dict(stores.references), dict(stores.documents))

    services.repair.audit("u_stu_1")

    assert (dict(stores.references), dict(stores.documents)) == before


def test_repair_heals_dangling_pointer_within_window(services):
    achievement = _achievement(services, offset_s=0)
    ref = _reference(services, achievement_id="stale-id", offset_s=2)

    report = services.repair.repair("u_stu_1")

    assert [(x.action, x.old_value, x.new_value) for x in report.fixes] == [
        (ACTION_POINTER_HEALED, "stale-id", achievement.id)
    ]
    assert services.references.get(ref.id).achievement_id == achievement.id
    assert report.unresolved == []


def test_repair_picks_closest_unclaimed_candidate(services):
    far = _achievement(services, offset_s=0)
    near = _achievement(services, offset_s=7)
    ref = _reference(services, achievement_id="stale-id", offset_s=8)

    services.repair.repair("u_stu_1")

    assert services.references.get(ref.id).achievement_id == near.id
    # the other achievement gets a synthesized reference instead
    assert services.references.get_by_achievement_id(far.id) is not None


def test_repair_leaves_orphan_outside_window(services):
    achievement = _achievement(services, offset_s=0)
    ref = _reference(services, achievement_id="stale-id", offset_s=11)

    report = services.repair.repair("u_stu_1")

    assert [x.kind for x in report.unresolved] == [ORPHANED_REFERENCE]
    assert report.unresolved[0].reference_id == ref.id
    assert services.references.get(ref.id).achievement_id == "stale-id"
    created = [x for x in report.fixes if x.action == ACTION_REFERENCE_CREATED]
    assert [x.achievement_id for x in created] == [achievement.id]


def test_repair_never_reassigns_claimed_achievement(services):
    claimed = _achievement(services, offset_s=0)
    owner_ref = _reference(services, achievement_id=claimed.id, offset_s=0)
    stray = _reference(services, achievement_id="stale-id", offset_s=1)

    report = services.repair.repair("u_stu_1")

    assert services.references.get(stray.id).achievement_id == "stale-id"
    assert services.references.get(owner_ref.id).achievement_id == claimed.id
    assert [x.kind for x in report.unresolved] == [ORPHANED_REFERENCE]
    _assert_unique_live_pointers(services)


def test_two_dangling_references_compete_for_one_achievement(services):
    achievement = _achievement(services, offset_s=5)
    older = _reference(services, achievement_id="lost-a", offset_s=4)
    newer = _reference(services, achievement_id="lost-b", offset_s=5)

    report = services.repair.repair("u_stu_1")

    assert services.references.get(older.id).achievement_id == achievement.id
    assert services.references.get(newer.id).achievement_id == "lost-b"
    assert [x.reference_id for x in report.unresolved] == [newer.id]
    _assert_unique_live_pointers(services)


def test_repair_synthesizes_reference_for_missing_one(services):
    achievement = _achievement(services, offset_s=42)

    report = services.repair.repair("u_stu_1")

    assert [x.action for x in report.fixes] == [ACTION_REFERENCE_CREATED]
    ref = services.references.get_by_achievement_id(achievement.id)
    assert ref.status == DRAFT
    assert ref.created_at == achievement.created_at
    assert report.fixes[0].new_value == ref.id


def test_repair_does_not_synthesize_for_soft_deleted_achievement(services):
    _achievement(services, offset_s=0, deleted=True)

    report = services.repair.repair("u_stu_1")

    assert report.fixes == []


def test_deleted_reference_only_matches_soft_deleted_achievement(services):
    live = _achievement(services, offset_s=0)
    soft = _achievement(services, offset_s=3, deleted=True)
    ref = _reference(services, achievement_id="lost", offset_s=1, status=DELETED)

    services.repair.repair("u_stu_1")

    assert services.references.get(ref.id).achievement_id == soft.id
    assert services.references.get_by_achievement_id(live.id).status == DRAFT


def test_repair_syncs_stale_draft_after_partial_soft_delete(services, lifecycle, monkeypatch):
    achievement, reference = lifecycle.create("u_stu_1", "academic", "Cert", "Desc", {})
    original_update = services.references.update

    def _fail(ref):
        raise TimeoutError("reference store timeout")

    monkeypatch.setattr(services.references, "update", _fail)
    lifecycle.soft_delete("u_stu_1", achievement.id)
    monkeypatch.setattr(services.references, "update", original_update)

    assert [x.kind for x in services.repair.audit("u_stu_1")] == [STALE_STATUS]
    report = services.repair.repair("u_stu_1")

    assert [(x.action, x.old_value, x.new_value) for x in report.fixes] == [(ACTION_STATUS_SYNCED, DRAFT, DELETED)]
    assert services.references.get(reference.id).status == DELETED
    assert services.repair.audit("u_stu_1") == []


def test_repair_is_idempotent(services):
    a1 = _achievement(services, offset_s=0)
    _achievement(services, offset_s=100)
    _achievement(services, offset_s=200, deleted=True)
    _reference(services, achievement_id="lost-1", offset_s=1)
    _reference(services, achievement_id="lost-2", offset_s=500)
    _reference(services, achievement_id=a1.id, offset_s=0, status=DRAFT)

    first = services.repair.repair("u_stu_1")
    second = services.repair.repair("u_stu_1")

    assert len(first.fixes) > 0
    assert second.fixes == []
    assert [x.reference_id for x in second.unresolved] == [x.reference_id for x in first.unresolved]
    _assert_unique_live_pointers(services)


def test_dry_run_reports_without_writing(services, stores):
    _achievement(services, offset_s=0)
    _reference(services, achievement_id="stale-id", offset_s=1)
    _achievement(services, offset_s=300)
    before = {k: v.achievement_id for k, v in stores.references.items()}

    preview = services.repair.repair("u_stu_1", dry_run=True)

    assert preview.dry_run is True
    assert sorted(x.action for x in preview.fixes) == [ACTION_POINTER_HEALED, ACTION_REFERENCE_CREATED]
    assert {k: v.achievement_id for k, v in stores.references.items()} == before
    applied = services.repair.repair("u_stu_1")
    assert [x.action for x in applied.fixes] == [x.action for x in preview.fixes]


def test_repair_continues_after_store_failure(stores, clock, caplog):
    achievements = InMemoryAchievementsRepository(stores.documents)
    references = InMemoryReferencesRepository(stores.references)
    engine = ReferenceRepairEngine(achievements=achievements, references=references, now=clock)
    first = achievements.create(
        Achievement(
            student_id="u_stu_1",
            category="academic",
            title="A",
            description="A",
            details=parse_details("academic", {}),
            created_at=_at(0),
        )
    )
    second = achievements.create(
        Achievement(
            student_id="u_stu_1",
            category="academic",
            title="B",
            description="B",
            details=parse_details("academic", {}),
            created_at=_at(100),
        )
    )
    original_create = references.create
    calls = []

    def _flaky(ref):
        calls.append(ref.achievement_id)
        if ref.achievement_id == first.id:
            raise ConnectionError("reference store reset")
        return original_create(ref)

    references.create = _flaky
    with caplog.at_level(logging.WARNING):
        report = engine.repair("u_stu_1")

    assert calls == [first.id, second.id]
    assert [x["achievement_id"] for x in report.failed] == [first.id]
    assert [x.achievement_id for x in report.fixes] == [second.id]
    assert report.to_dict()["summary"] == {"fixed": 1, "unresolved": 0, "failed": 1}
    assert "reference_repair_failed" in caplog.text


def test_repair_is_scoped_to_one_student(services):
    _achievement(services, offset_s=0, student_id="u_stu_2")
    _reference(services, achievement_id="stale", offset_s=0, student_id="u_stu_2")

    report = services.repair.repair("u_stu_1")

    assert report.fixes == []
    assert report.unresolved == []


def test_safe_resolve_direct_lookup(services, lifecycle):
    achievement, reference = lifecycle.create("u_stu_1", "academic", "Cert", "Desc", {})

    assert services.repair.safe_resolve_reference(achievement.id).id == reference.id


def test_safe_resolve_falls_back_and_heals(services, caplog):
    achievement = _achievement(services, offset_s=10)
    ref = _reference(services, achievement_id="wrong-id", offset_s=12)

    with caplog.at_level(logging.INFO):
        resolved = services.repair.safe_resolve_reference(achievement.id)

    assert resolved.id == ref.id
    assert resolved.achievement_id == achievement.id
    assert services.references.get(ref.id).achievement_id == achievement.id
    assert "reference_lazy_heal" in caplog.text


def test_safe_resolve_without_heal_keeps_store_untouched(stores, clock):
    achievements = InMemoryAchievementsRepository(stores.documents)
    references = InMemoryReferencesRepository(stores.references)
    engine = ReferenceRepairEngine(
        achievements=achievements,
        references=references,
        heal_on_resolve=False,
        now=clock,
    )
    achievement = achievements.create(
        Achievement(
            student_id="u_stu_1",
            category="academic",
            title="A",
            description="A",
            details=parse_details("academic", {}),
            created_at=_at(0),
        )
    )
    ref = references.create(AchievementReference(student_id="u_stu_1", achievement_id="wrong", created_at=_at(1)))

    assert engine.safe_resolve_reference(achievement.id).id == ref.id
    assert references.get(ref.id).achievement_id == "wrong"


def test_safe_resolve_ignores_references_that_resolve_elsewhere(services):
    target = _achievement(services, offset_s=0)
    other = _achievement(services, offset_s=1)
    _reference(services, achievement_id=other.id, offset_s=1)

    with pytest.raises(NotFoundError) as exc:
        services.repair.safe_resolve_reference(target.id)

    assert exc.value.code == "REFERENCE_NOT_FOUND"


def test_safe_resolve_outside_window_and_unknown_achievement(services):
    achievement = _achievement(services, offset_s=0)
    _reference(services, achievement_id="wrong-id", offset_s=6)

    with pytest.raises(NotFoundError):
        services.repair.safe_resolve_reference(achievement.id)
    with pytest.raises(NotFoundError) as exc:
        services.repair.safe_resolve_reference("no-such-achievement")
    assert exc.value.code == "ACHIEVEMENT_NOT_FOUND"


def test_safe_resolve_refuses_reference_closer_to_another_achievement(services):
    requested = _achievement(services, offset_s=0)
    owner = _achievement(services, offset_s=3)
    ref = _reference(services, achievement_id="lost-pointer", offset_s=3, status="verified")

    with pytest.raises(NotFoundError) as exc:
        services.repair.safe_resolve_reference(requested.id)

    assert exc.value.code == "REFERENCE_NOT_FOUND"
    assert services.references.get(ref.id).achievement_id == "lost-pointer"
    report = services.repair.repair("u_stu_1")
    healed = [x for x in report.fixes if x.action == ACTION_POINTER_HEALED]
    assert [(x.reference_id, x.new_value) for x in healed] == [(ref.id, owner.id)]
    assert services.references.get(ref.id).status == "verified"


def test_safe_resolve_viewer_read_does_not_move_verified_reference(services, lifecycle):
    requested = _achievement(services, offset_s=0)
    _achievement(services, offset_s=3)
    ref = _reference(services, achievement_id="lost-pointer", offset_s=3, status="verified")

    view = lifecycle.get_achievement_for_viewer("u_stu_1", requested.id)

    assert view.reference is None
    assert services.references.get(ref.id).achievement_id == "lost-pointer"
