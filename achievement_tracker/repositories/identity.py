from __future__ import annotations

import re
from typing import Any

from achievement_tracker.db.postgres import PostgresTxRunner
from achievement_tracker.models import Lecturer, Student, User


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


class InMemoryIdentityRepository:
    """Read-only identity lookups over dicts keyed by internal id."""

    def __init__(
        self,
        users: dict[str, User],
        students: dict[str, Student],
        lecturers: dict[str, Lecturer],
    ) -> None:
        self._users = users
        self._students = students
        self._lecturers = lecturers

    def get_user_by_id(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    def get_student_by_user_id(self, user_id: str) -> Student | None:
        for row in self._students.values():
            if row.user_id == user_id:
                return row
        return None

    def get_lecturer_by_user_id(self, user_id: str) -> Lecturer | None:
        for row in self._lecturers.values():
            if row.user_id == user_id:
                return row
        return None

    def get_lecturer_by_id(self, lecturer_id: str) -> Lecturer | None:
        return self._lecturers.get(lecturer_id)

    def get_students_by_advisor_id(self, advisor_id: str) -> list[Student]:
        rows = [x for x in self._students.values() if x.advisor_id == advisor_id]
        return sorted(rows, key=lambda x: x.student_number)


class PostgresIdentityRepository:
    """Identity lookups against the relational user schema; never writes."""

    def __init__(
        self,
        *,
        tx_runner: PostgresTxRunner,
        users_table: str = "users",
        roles_table: str = "roles",
        students_table: str = "students",
        lecturers_table: str = "lecturers",
    ) -> None:
        self._tx_runner = tx_runner
        self._users = _validate_identifier(users_table)
        self._roles = _validate_identifier(roles_table)
        self._students = _validate_identifier(students_table)
        self._lecturers = _validate_identifier(lecturers_table)

    def _fetch_one(self, sql: str, params: tuple[Any, ...]) -> tuple[Any, ...] | None:
        def _op(conn: Any) -> tuple[Any, ...] | None:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchone()

        return self._tx_runner.run_in_tx(fn=_op)

    def _fetch_all(self, sql: str, params: tuple[Any, ...]) -> list[tuple[Any, ...]]:
        def _op(conn: Any) -> list[tuple[Any, ...]]:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return list(cur.fetchall() or [])

        return self._tx_runner.run_in_tx(fn=_op)

    @staticmethod
    def _student_from_row(row: tuple[Any, ...]) -> Student:
        return Student(
            id=str(row[0]),
            user_id=str(row[1]),
            student_number=str(row[2] or ""),
            program_study=str(row[3] or ""),
            academic_year=str(row[4] or ""),
            advisor_id=str(row[5]) if row[5] else None,
        )

    @staticmethod
    def _lecturer_from_row(row: tuple[Any, ...]) -> Lecturer:
        return Lecturer(
            id=str(row[0]),
            user_id=str(row[1]),
            lecturer_number=str(row[2] or ""),
            department=str(row[3] or ""),
        )

    def get_user_by_id(self, user_id: str) -> User | None:
        sql = f"""
            SELECT u.id, u.username, u.full_name, r.name, u.is_active
            FROM {self._users} u
            LEFT JOIN {self._roles} r ON r.id = u.role_id
            WHERE u.id = %s
            LIMIT 1
        """
        row = self._fetch_one(sql, (user_id,))
        if row is None:
            return None
        return User(
            id=str(row[0]),
            username=str(row[1] or ""),
            full_name=str(row[2] or ""),
            role=str(row[3] or ""),
            is_active=bool(row[4]),
        )

    def get_student_by_user_id(self, user_id: str) -> Student | None:
        sql = f"""
            SELECT id, user_id, student_id, program_study, academic_year, advisor_id
            FROM {self._students}
            WHERE user_id = %s
            LIMIT 1
        """
        row = self._fetch_one(sql, (user_id,))
        return None if row is None else self._student_from_row(row)

    def get_lecturer_by_user_id(self, user_id: str) -> Lecturer | None:
        sql = f"""
            SELECT id, user_id, lecturer_id, department
            FROM {self._lecturers}
            WHERE user_id = %s
            LIMIT 1
        """
        row = self._fetch_one(sql, (user_id,))
        return None if row is None else self._lecturer_from_row(row)

    def get_lecturer_by_id(self, lecturer_id: str) -> Lecturer | None:
        sql = f"""
            SELECT id, user_id, lecturer_id, department
            FROM {self._lecturers}
            WHERE id = %s
            LIMIT 1
        """
        row = self._fetch_one(sql, (lecturer_id,))
        return None if row is None else self._lecturer_from_row(row)

    def get_students_by_advisor_id(self, advisor_id: str) -> list[Student]:
        sql = f"""
            SELECT id, user_id, student_id, program_study, academic_year, advisor_id
            FROM {self._students}
            WHERE advisor_id = %s
            ORDER BY student_id
        """
        return [self._student_from_row(row) for row in self._fetch_all(sql, (advisor_id,))]
