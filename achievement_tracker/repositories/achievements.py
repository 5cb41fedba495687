from __future__ import annotations

import json
import re
import uuid
from datetime import UTC, datetime
from typing import Any

from achievement_tracker.db.postgres import PostgresTxRunner
from achievement_tracker.models import Achievement, parse_timestamp, utcnow


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _created_key(doc: dict[str, Any]) -> datetime:
    return parse_timestamp(doc.get("created_at")) or _EPOCH


def _new_document_id() -> str:
    return uuid.uuid4().hex[:24]


def _stamp_new(achievement: Achievement) -> dict[str, Any]:
    doc = achievement.to_document()
    now = utcnow().isoformat()
    doc["id"] = doc.get("id") or _new_document_id()
    doc["created_at"] = doc.get("created_at") or now
    doc["updated_at"] = doc.get("updated_at") or doc["created_at"]
    return doc


class InMemoryAchievementsRepository:
    """Achievement documents kept as plain JSON-shaped dicts keyed by id."""

    def __init__(self, documents: dict[str, dict[str, Any]]) -> None:
        self._documents = documents

    def create(self, achievement: Achievement) -> Achievement:
        doc = _stamp_new(achievement)
        self._documents[doc["id"]] = doc
        return Achievement.from_document(dict(doc))

    def get(self, achievement_id: str, *, include_deleted: bool = True) -> Achievement | None:
        doc = self._documents.get(achievement_id)
        if doc is None:
            return None
        if not include_deleted and doc.get("deleted_at"):
            return None
        return Achievement.from_document(dict(doc))

    def update(self, achievement: Achievement) -> Achievement:
        if achievement.id is None or achievement.id not in self._documents:
            raise KeyError(f"achievement not stored: {achievement.id}")
        doc = achievement.to_document()
        doc["updated_at"] = doc.get("updated_at") or utcnow().isoformat()
        self._documents[str(achievement.id)] = doc
        return Achievement.from_document(dict(doc))

    def delete(self, achievement_id: str) -> bool:
        return self._documents.pop(achievement_id, None) is not None

    def list_by_student(self, student_id: str, *, include_deleted: bool = False) -> list[Achievement]:
        rows = [
            x
            for x in self._documents.values()
            if x.get("student_id") == student_id and (include_deleted or not x.get("deleted_at"))
        ]
        rows.sort(key=_created_key)
        return [Achievement.from_document(dict(x)) for x in rows]

    def list_by_students(self, student_ids: list[str], *, limit: int, offset: int) -> list[Achievement]:
        wanted = set(student_ids)
        rows = [x for x in self._documents.values() if x.get("student_id") in wanted and not x.get("deleted_at")]
        rows.sort(key=_created_key, reverse=True)
        return [Achievement.from_document(dict(x)) for x in rows[offset : offset + limit]]

    def count_by_students(self, student_ids: list[str]) -> int:
        wanted = set(student_ids)
        return sum(1 for x in self._documents.values() if x.get("student_id") in wanted and not x.get("deleted_at"))

    def get_many(self, achievement_ids: list[str], *, include_deleted: bool = True) -> list[Achievement]:
        rows = [self._documents[x] for x in dict.fromkeys(achievement_ids) if x in self._documents]
        if not include_deleted:
            rows = [x for x in rows if not x.get("deleted_at")]
        return [Achievement.from_document(dict(x)) for x in rows]


class PostgresAchievementsRepository:
    """Achievement documents stored as JSONB, with the queried fields lifted into columns."""

    _COLUMNS = "id, document"

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "achievements") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    @staticmethod
    def _from_row(row: tuple[Any, ...]) -> Achievement:
        doc = row[1] if isinstance(row[1], dict) else json.loads(row[1])
        doc["id"] = row[0]
        return Achievement.from_document(doc)

    @staticmethod
    def _document_params(doc: dict[str, Any]) -> tuple[Any, ...]:
        return (
            doc["id"],
            doc["student_id"],
            doc["category"],
            parse_timestamp(doc.get("deleted_at")),
            parse_timestamp(doc.get("created_at")),
            parse_timestamp(doc.get("updated_at")),
            json.dumps(doc, ensure_ascii=True, sort_keys=True),
        )

    def create(self, achievement: Achievement) -> Achievement:
        doc = _stamp_new(achievement)
        sql = f"""
            INSERT INTO {self._table_name} (
                id, student_id, category, deleted_at, created_at, updated_at, document
            ) VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb)
        """

        def _op(conn: Any) -> Achievement:
            with conn.cursor() as cur:
                cur.execute(sql, self._document_params(doc))
            return Achievement.from_document(doc)

        return self._tx_runner.run_in_tx(fn=_op)

    def get(self, achievement_id: str, *, include_deleted: bool = True) -> Achievement | None:
        deleted_filter = "" if include_deleted else " AND deleted_at IS NULL"
        sql = f"""
            SELECT {self._COLUMNS}
            FROM {self._table_name}
            WHERE id = %s{deleted_filter}
            LIMIT 1
        """

        def _op(conn: Any) -> Achievement | None:
            with conn.cursor() as cur:
                cur.execute(sql, (achievement_id,))
                row = cur.fetchone()
            return None if row is None else self._from_row(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def update(self, achievement: Achievement) -> Achievement:
        doc = achievement.to_document()
        doc["updated_at"] = doc.get("updated_at") or utcnow().isoformat()
        sql = f"""
            UPDATE {self._table_name}
            SET student_id = %s, category = %s, deleted_at = %s, updated_at = %s, document = %s::jsonb
            WHERE id = %s
        """
        params = self._document_params(doc)

        def _op(conn: Any) -> Achievement:
            with conn.cursor() as cur:
                cur.execute(sql, (params[1], params[2], params[3], params[5], params[6], params[0]))
                if cur.rowcount == 0:
                    raise KeyError(f"achievement not stored: {doc['id']}")
            return Achievement.from_document(doc)

        return self._tx_runner.run_in_tx(fn=_op)

    def delete(self, achievement_id: str) -> bool:
        sql = f"DELETE FROM {self._table_name} WHERE id = %s"

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, (achievement_id,))
                return cur.rowcount > 0

        return self._tx_runner.run_in_tx(fn=_op)

    def list_by_student(self, student_id: str, *, include_deleted: bool = False) -> list[Achievement]:
        deleted_filter = "" if include_deleted else " AND deleted_at IS NULL"
        sql = f"""
            SELECT {self._COLUMNS}
            FROM {self._table_name}
            WHERE student_id = %s{deleted_filter}
            ORDER BY created_at ASC
        """

        def _op(conn: Any) -> list[Achievement]:
            with conn.cursor() as cur:
                cur.execute(sql, (student_id,))
                rows = cur.fetchall() or []
            return [self._from_row(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def list_by_students(self, student_ids: list[str], *, limit: int, offset: int) -> list[Achievement]:
        if not student_ids:
            return []
        sql = f"""
            SELECT {self._COLUMNS}
            FROM {self._table_name}
            WHERE student_id = ANY(%s) AND deleted_at IS NULL
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
        """

        def _op(conn: Any) -> list[Achievement]:
            with conn.cursor() as cur:
                cur.execute(sql, (list(student_ids), int(limit), int(offset)))
                rows = cur.fetchall() or []
            return [self._from_row(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def count_by_students(self, student_ids: list[str]) -> int:
        if not student_ids:
            return 0
        sql = f"SELECT COUNT(*) FROM {self._table_name} WHERE student_id = ANY(%s) AND deleted_at IS NULL"

        def _op(conn: Any) -> int:
            with conn.cursor() as cur:
                cur.execute(sql, (list(student_ids),))
                row = cur.fetchone()
            return int(row[0]) if row else 0

        return self._tx_runner.run_in_tx(fn=_op)

    def get_many(self, achievement_ids: list[str], *, include_deleted: bool = True) -> list[Achievement]:
        if not achievement_ids:
            return []
        deleted_filter = "" if include_deleted else " AND deleted_at IS NULL"
        sql = f"""
            SELECT {self._COLUMNS}
            FROM {self._table_name}
            WHERE id = ANY(%s){deleted_filter}
        """

        def _op(conn: Any) -> list[Achievement]:
            with conn.cursor() as cur:
                cur.execute(sql, (list(dict.fromkeys(achievement_ids)),))
                rows = cur.fetchall() or []
            return [self._from_row(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)
