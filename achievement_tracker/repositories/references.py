from __future__ import annotations

import re
import uuid
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from achievement_tracker.db.postgres import PostgresTxRunner
from achievement_tracker.models import AchievementReference, parse_timestamp, utcnow
from achievement_tracker.status import DELETED

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def _stamp_new(reference: AchievementReference) -> AchievementReference:
    now = utcnow()
    created_at = reference.created_at or now
    return replace(
        reference,
        id=reference.id or f"ref_{uuid.uuid4().hex[:20]}",
        created_at=created_at,
        updated_at=reference.updated_at or created_at,
    )


def _created_key(reference: AchievementReference) -> datetime:
    return reference.created_at or _EPOCH


def _lookup_order(reference: AchievementReference) -> tuple[bool, datetime]:
    return (reference.status == DELETED, _created_key(reference))


class InMemoryReferencesRepository:
    def __init__(self, references: dict[str, AchievementReference]) -> None:
        self._references = references

    def create(self, reference: AchievementReference) -> AchievementReference:
        item = _stamp_new(reference)
        self._references[str(item.id)] = replace(item)
        return item

    def get(self, reference_id: str) -> AchievementReference | None:
        row = self._references.get(reference_id)
        return None if row is None else replace(row)

    def get_by_achievement_id(self, achievement_id: str) -> AchievementReference | None:
        rows = [x for x in self._references.values() if x.achievement_id == achievement_id]
        if not rows:
            return None
        return replace(min(rows, key=_lookup_order))

    def update(self, reference: AchievementReference) -> AchievementReference:
        if reference.id is None or reference.id not in self._references:
            raise KeyError(f"reference not stored: {reference.id}")
        item = replace(reference, updated_at=reference.updated_at or utcnow())
        self._references[str(item.id)] = replace(item)
        return item

    def list_by_student(self, student_id: str) -> list[AchievementReference]:
        rows = [replace(x) for x in self._references.values() if x.student_id == student_id]
        rows.sort(key=_created_key)
        return rows

    def list_by_status(self, status: str) -> list[AchievementReference]:
        rows = [replace(x) for x in self._references.values() if x.status == status]
        rows.sort(key=_created_key)
        return rows

    def list_filtered(self, *, status: str | None = None, student_id: str | None = None) -> list[AchievementReference]:
        rows = [
            replace(x)
            for x in self._references.values()
            if (status is None or x.status == status) and (student_id is None or x.student_id == student_id)
        ]
        rows.sort(key=_created_key)
        return rows


class PostgresReferencesRepository:
    """Workflow ledger rows; the achievement pointer is a plain text column, not a foreign key."""

    _COLUMNS = (
        "id, student_id, achievement_id, status, submitted_at, verified_at, "
        "verified_by, rejection_note, created_at, updated_at"
    )

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "achievement_references") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    @staticmethod
    def _from_row(row: tuple[Any, ...]) -> AchievementReference:
        return AchievementReference(
            id=str(row[0]),
            student_id=str(row[1]),
            achievement_id=str(row[2]),
            status=str(row[3]),
            submitted_at=parse_timestamp(row[4]),
            verified_at=parse_timestamp(row[5]),
            verified_by=row[6],
            rejection_note=row[7],
            created_at=parse_timestamp(row[8]),
            updated_at=parse_timestamp(row[9]),
        )

    def _select(self, where: str, params: tuple[Any, ...], *, order: str = "created_at ASC") -> list[AchievementReference]:
        sql = f"""
            SELECT {self._COLUMNS}
            FROM {self._table_name}
            WHERE {where}
            ORDER BY {order}
        """

        def _op(conn: Any) -> list[AchievementReference]:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall() or []
            return [self._from_row(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def create(self, reference: AchievementReference) -> AchievementReference:
        item = _stamp_new(reference)
        sql = f"""
            INSERT INTO {self._table_name} ({self._COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """

        def _op(conn: Any) -> AchievementReference:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        item.id,
                        item.student_id,
                        item.achievement_id,
                        item.status,
                        item.submitted_at,
                        item.verified_at,
                        item.verified_by,
                        item.rejection_note,
                        item.created_at,
                        item.updated_at,
                    ),
                )
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def get(self, reference_id: str) -> AchievementReference | None:
        rows = self._select("id = %s", (reference_id,))
        return rows[0] if rows else None

    def get_by_achievement_id(self, achievement_id: str) -> AchievementReference | None:
        rows = self._select(
            "achievement_id = %s",
            (achievement_id,),
            order=f"(status = '{DELETED}') ASC, created_at ASC",
        )
        return rows[0] if rows else None

    def update(self, reference: AchievementReference) -> AchievementReference:
        item = replace(reference, updated_at=reference.updated_at or utcnow())
        sql = f"""
            UPDATE {self._table_name}
            SET achievement_id = %s, status = %s, submitted_at = %s, verified_at = %s,
                verified_by = %s, rejection_note = %s, updated_at = %s
            WHERE id = %s
        """

        def _op(conn: Any) -> AchievementReference:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        item.achievement_id,
                        item.status,
                        item.submitted_at,
                        item.verified_at,
                        item.verified_by,
                        item.rejection_note,
                        item.updated_at,
                        item.id,
                    ),
                )
                if cur.rowcount == 0:
                    raise KeyError(f"reference not stored: {item.id}")
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def list_by_student(self, student_id: str) -> list[AchievementReference]:
        return self._select("student_id = %s", (student_id,))

    def list_by_status(self, status: str) -> list[AchievementReference]:
        return self._select("status = %s", (status,))

    def list_filtered(self, *, status: str | None = None, student_id: str | None = None) -> list[AchievementReference]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = %s")
            params.append(status)
        if student_id is not None:
            clauses.append("student_id = %s")
            params.append(student_id)
        return self._select(" AND ".join(clauses) or "TRUE", tuple(params))
