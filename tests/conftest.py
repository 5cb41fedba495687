import pathlib
import sys
from datetime import UTC, datetime, timedelta

import jwt
import pytest
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from achievement_tracker.config import Settings
from achievement_tracker.main import create_app
from achievement_tracker.models import Lecturer, Student, User
from achievement_tracker.services import InMemoryStores, build_in_memory_services

JWT_SECRET = "jwt_test_secret_for_achievement_tracker"
BASE_TIME = datetime(2024, 3, 1, 9, 0, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


def _seed(stores: InMemoryStores) -> InMemoryStores:
    stores.users.update(
        {
            "u_stu_1": User(id="u_stu_1", username="siti", full_name="Siti Rahma", role="student"),
            "u_stu_2": User(id="u_stu_2", username="budi", full_name="Budi Santoso", role="student"),
            "u_lec_1": User(id="u_lec_1", username="dr.ani", full_name="Dr. Ani", role="lecturer"),
            "u_lec_2": User(id="u_lec_2", username="dr.joko", full_name="Dr. Joko", role="lecturer"),
            "u_admin": User(id="u_admin", username="admin", full_name="Admin", role="admin"),
        }
    )
    stores.lecturers.update(
        {
            "lec_1": Lecturer(id="lec_1", user_id="u_lec_1", lecturer_number="L001", department="Informatics"),
            "lec_2": Lecturer(id="lec_2", user_id="u_lec_2", lecturer_number="L002", department="Physics"),
        }
    )
    stores.students.update(
        {
            "stu_1": Student(
                id="stu_1",
                user_id="u_stu_1",
                student_number="S001",
                program_study="Informatics",
                academic_year="2022",
                advisor_id="lec_1",
            ),
            "stu_2": Student(
                id="stu_2",
                user_id="u_stu_2",
                student_number="S002",
                program_study="Physics",
                academic_year="2023",
                advisor_id="lec_2",
            ),
        }
    )
    return stores


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stores() -> InMemoryStores:
    return _seed(InMemoryStores())


@pytest.fixture
def services(stores: InMemoryStores, clock: FakeClock):
    return build_in_memory_services(Settings(), stores=stores, now=clock)


@pytest.fixture
def lifecycle(services):
    return services.lifecycle


def issue_token(*, user_id: str, role: str, secret: str = JWT_SECRET, ttl_minutes: int = 30) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "role": role,
        "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp()),
        "iat": int(now.timestamp()),
        "iss": "test-issuer",
        "aud": "test-audience",
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user_id: str, role: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_token(user_id=user_id, role=role)}"}


@pytest.fixture
def client(services, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("JWT_SHARED_SECRET", JWT_SECRET)
    monkeypatch.setenv("JWT_ISSUER", "test-issuer")
    monkeypatch.setenv("JWT_AUDIENCE", "test-audience")
    monkeypatch.setenv("JWT_REQUIRED_CLAIMS", "sub,role,exp")
    app = create_app(settings=Settings(), services=services)
    return TestClient(app)
