"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Iterator

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.config import get_settings
from app.core.security import create_access_token
from app.database import get_db
from app.main import app
from app.models import Base, ChatRoom, Course, Enrollment, EnrollmentStatus, User
from app.monitoring.registry import registry
from app.services import RealtimeServices, build_services
from edify.realtime import Connection


class DummyWebSocket:
    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self.application_state != WebSocketState.CONNECTED:
            raise RuntimeError("socket closed")
        self.sent.append(payload)

    def types(self) -> list[str]:
        return [payload["type"] for payload in self.sent]


def make_connection(user_id: int, display_name: str = "Tester") -> Connection:
    return Connection(websocket=DummyWebSocket(), user_id=user_id, display_name=display_name)


def auth_headers(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user_id)})}"}


@pytest.fixture(autouse=True)
def reset_metrics() -> Iterator[None]:
    registry.reset()
    yield
    registry.reset()


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, future=True)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def campus(session_factory) -> SimpleNamespace:
    """Two courses with a teacher, approved, pending and foreign students."""

    with session_factory() as session:
        teacher = User(email="teacher@example.com", first_name="Tina", last_name="Teach", can_teach=True)
        student = User(email="student@example.com", first_name="Sam", last_name="Study", can_study=True)
        pending = User(email="pending@example.com", first_name="Pat", last_name="Wait", can_study=True)
        outsider = User(email="outsider@example.com", first_name="Olga", last_name="Other", can_study=True)
        other_teacher = User(email="other@example.com", first_name="Omar", last_name="Prof", can_teach=True)
        session.add_all([teacher, student, pending, outsider, other_teacher])
        session.flush()

        course = Course(title="Algebra", teacher_id=teacher.id)
        other_course = Course(title="Biology", teacher_id=other_teacher.id)
        session.add_all([course, other_course])
        session.flush()

        now = datetime.now(timezone.utc)
        session.add_all(
            [
                Enrollment(
                    student_id=student.id, course_id=course.id, status=EnrollmentStatus.APPROVED, approved_at=now
                ),
                Enrollment(student_id=pending.id, course_id=course.id, status=EnrollmentStatus.PENDING),
                Enrollment(
                    student_id=outsider.id,
                    course_id=other_course.id,
                    status=EnrollmentStatus.APPROVED,
                    approved_at=now,
                ),
            ]
        )
        room = ChatRoom(name="Algebra - Group Chat", course_id=course.id)
        other_room = ChatRoom(name="Biology - Group Chat", course_id=other_course.id)
        session.add_all([room, other_room])
        session.commit()

        return SimpleNamespace(
            teacher_id=teacher.id,
            student_id=student.id,
            pending_id=pending.id,
            outsider_id=outsider.id,
            other_teacher_id=other_teacher.id,
            course_id=course.id,
            other_course_id=other_course.id,
            room_id=room.id,
            other_room_id=other_room.id,
        )


@pytest.fixture()
def services(session_factory) -> Iterator[RealtimeServices]:
    built = build_services(get_settings(), session_factory)
    try:
        yield built
    finally:
        built.shutdown()


@pytest.fixture()
def client(session_factory) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient wired to the test database."""

    def override_get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.session_factory = session_factory
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.session_factory = None
