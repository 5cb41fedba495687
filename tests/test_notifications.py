import logging

from achievement_tracker.models import Notification
from achievement_tracker.notifications import KIND_SUBMITTED, NotificationDispatcher
from achievement_tracker.repositories import InMemoryNotificationsRepository


class BrokenSink:
    def create(self, notification: Notification) -> Notification:
        raise ConnectionError("notification store unreachable")


def test_dispatcher_persists_notification():
    items: list[Notification] = []
    dispatcher = NotificationDispatcher(InMemoryNotificationsRepository(items))

    ok = dispatcher.notify("u_lec_1", KIND_SUBMITTED, "Submitted", "A student submitted", {"reference_id": "ref_1"})

    assert ok is True
    assert items[0].user_id == "u_lec_1"
    assert items[0].data == {"reference_id": "ref_1"}
    assert items[0].is_read is False
    assert items[0].created_at is not None


def test_dispatcher_swallows_sink_failure_and_logs(caplog):
    dispatcher = NotificationDispatcher(BrokenSink())

    with caplog.at_level(logging.WARNING):
        ok = dispatcher.notify("u_stu_1", "achievement_rejected", "Rejected", "Missing proof")

    assert ok is False
    assert "notification_failed kind=achievement_rejected user_id=u_stu_1 error=ConnectionError" in caplog.text


def test_dispatcher_skips_missing_recipient(caplog):
    items: list[Notification] = []
    dispatcher = NotificationDispatcher(InMemoryNotificationsRepository(items))

    with caplog.at_level(logging.WARNING):
        assert dispatcher.notify("", KIND_SUBMITTED, "t", "m") is False

    assert items == []
    assert "missing_recipient" in caplog.text


def test_mark_read_is_owner_only_and_updates_unread_count():
    items: list[Notification] = []
    repo = InMemoryNotificationsRepository(items)
    first = repo.create(Notification(user_id="u_stu_1", kind=KIND_SUBMITTED, title="one", message="m"))
    repo.create(Notification(user_id="u_stu_1", kind=KIND_SUBMITTED, title="two", message="m"))

    assert repo.count_unread("u_stu_1") == 2
    assert repo.mark_read(first.id, "u_stu_2") is None
    assert repo.count_unread("u_stu_1") == 2

    marked = repo.mark_read(first.id, "u_stu_1")

    assert marked.is_read is True
    assert repo.count_unread("u_stu_1") == 1
    assert repo.mark_read("ntf_missing", "u_stu_1") is None
