from __future__ import annotations

import json
import re
import uuid
from dataclasses import replace
from typing import Any

from achievement_tracker.db.postgres import PostgresTxRunner
from achievement_tracker.models import Notification, parse_timestamp, utcnow


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def _row_to_notification(row: Any) -> Notification:
    return Notification(
        id=str(row[0]),
        user_id=str(row[1]),
        kind=str(row[2]),
        title=str(row[3]),
        message=str(row[4]),
        data=row[5] if isinstance(row[5], dict) else {},
        is_read=bool(row[6]),
        created_at=parse_timestamp(row[7]),
    )


def _stamp_new(notification: Notification) -> Notification:
    return replace(
        notification,
        id=notification.id or f"ntf_{uuid.uuid4().hex[:20]}",
        is_read=False,
        created_at=notification.created_at or utcnow(),
    )


class InMemoryNotificationsRepository:
    def __init__(self, notifications: list[Notification]) -> None:
        self._notifications = notifications

    def create(self, notification: Notification) -> Notification:
        item = _stamp_new(notification)
        self._notifications.append(item)
        return replace(item)

    def list_by_user(self, user_id: str) -> list[Notification]:
        rows = [replace(x) for x in self._notifications if x.user_id == user_id]
        rows.reverse()
        return rows

    def mark_read(self, notification_id: str, user_id: str) -> Notification | None:
        for idx, item in enumerate(self._notifications):
            if item.id == notification_id and item.user_id == user_id:
                self._notifications[idx] = replace(item, is_read=True)
                return replace(self._notifications[idx])
        return None

    def count_unread(self, user_id: str) -> int:
        return sum(1 for x in self._notifications if x.user_id == user_id and not x.is_read)


class PostgresNotificationsRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "notifications") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    def create(self, notification: Notification) -> Notification:
        item = _stamp_new(notification)
        sql = f"""
            INSERT INTO {self._table_name} (id, user_id, kind, title, message, data, is_read, created_at)
            VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s, %s)
        """

        def _op(conn: Any) -> Notification:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        item.id,
                        item.user_id,
                        item.kind,
                        item.title,
                        item.message,
                        json.dumps(item.data, ensure_ascii=True, sort_keys=True, default=str),
                        item.is_read,
                        item.created_at,
                    ),
                )
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def list_by_user(self, user_id: str) -> list[Notification]:
        sql = f"""
            SELECT id, user_id, kind, title, message, data, is_read, created_at
            FROM {self._table_name}
            WHERE user_id = %s
            ORDER BY created_at DESC
        """

        def _op(conn: Any) -> list[Notification]:
            with conn.cursor() as cur:
                cur.execute(sql, (user_id,))
                rows = cur.fetchall() or []
            return [_row_to_notification(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def mark_read(self, notification_id: str, user_id: str) -> Notification | None:
        sql = f"""
            UPDATE {self._table_name}
            SET is_read = TRUE
            WHERE id = %s AND user_id = %s
            RETURNING id, user_id, kind, title, message, data, is_read, created_at
        """

        def _op(conn: Any) -> Notification | None:
            with conn.cursor() as cur:
                cur.execute(sql, (notification_id, user_id))
                row = cur.fetchone()
            return None if row is None else _row_to_notification(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def count_unread(self, user_id: str) -> int:
        sql = f"SELECT COUNT(*) FROM {self._table_name} WHERE user_id = %s AND is_read = FALSE"

        def _op(conn: Any) -> int:
            with conn.cursor() as cur:
                cur.execute(sql, (user_id,))
                row = cur.fetchone()
            return int(row[0]) if row else 0

        return self._tx_runner.run_in_tx(fn=_op)
