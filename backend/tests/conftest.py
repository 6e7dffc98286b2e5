"""Shared test fixtures."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from skillbarter.audit.models import AuditLog
from skillbarter.database import Base
from skillbarter.errors import UpstreamFailure
from skillbarter.matching.models import Match, MatchStatus
from skillbarter.matching.schemas import TimeSlot
from skillbarter.notifications.models import Notification
from skillbarter.sessions.models import SkillSession
from skillbarter.skills.models import Skill
from skillbarter.users.models import User

# Models must be imported so Base.metadata.create_all() sees all tables.
_ALL_MODELS = [AuditLog, Match, Notification, SkillSession, Skill, User]


@pytest.fixture
def db_session():
    """Create an in-memory SQLite database for testing.

    pysqlite's own transaction handling breaks SAVEPOINT, so BEGIN is emitted
    explicitly (see the SQLAlchemy SQLite dialect docs).
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    TestSession = sessionmaker(bind=engine)
    session = TestSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


class RecordingPushChannel:
    """Push channel that keeps every payload; ``fail`` makes it raise."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.pushed: list[tuple[str, dict]] = []

    def push(self, user_id: str, payload: dict) -> None:
        if self.fail:
            raise UpstreamFailure("redis down")
        self.pushed.append((user_id, payload))

    def types_for(self, user_id) -> list[str]:
        return [payload["type"] for uid, payload in self.pushed if uid == str(user_id)]


class RecordingRewardsLedger:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.events: list[tuple] = []

    def session_completed(self, session_id: str, teacher_id: str, student_id: str) -> None:
        if self.fail:
            raise UpstreamFailure("rewards down")
        self.events.append(("session_completed", session_id, teacher_id, student_id))

    def feedback_submitted(self, session_id: str, author_id: str, role: str) -> None:
        if self.fail:
            raise UpstreamFailure("rewards down")
        self.events.append(("feedback_submitted", session_id, author_id, role))


@pytest.fixture
def push():
    return RecordingPushChannel()


@pytest.fixture
def failing_push():
    return RecordingPushChannel(fail=True)


@pytest.fixture
def rewards():
    return RecordingRewardsLedger()


@pytest.fixture
def failing_rewards():
    return RecordingRewardsLedger(fail=True)


@pytest.fixture
def make_user(db_session):
    def _make(name: str, email: str | None = None) -> User:
        user = User(id=uuid.uuid4(), name=name, email=email or f"{name.lower()}@example.com")
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def make_skill(db_session):
    def _make(user: User, name: str, level: str | None, *, teaching: bool = False, learning: bool = False) -> Skill:
        skill = Skill(
            id=uuid.uuid4(),
            user_id=user.id,
            skill_name=name,
            proficiency_level=level,
            is_teaching=teaching,
            is_learning=learning,
        )
        db_session.add(skill)
        db_session.commit()
        return skill

    return _make


@pytest.fixture
def learner(make_user):
    return make_user("Lena")


@pytest.fixture
def teacher(make_user):
    return make_user("Tomas")


@pytest.fixture
def outsider(make_user):
    return make_user("Olga")


@pytest.fixture
def guitar_skill(make_skill, teacher):
    return make_skill(teacher, "Guitar", "Expert", teaching=True)


@pytest.fixture
def make_match(db_session, learner, teacher, guitar_skill):
    def _make(status: MatchStatus = MatchStatus.PENDING, **fields) -> Match:
        match = Match(
            id=uuid.uuid4(),
            requester_id=learner.id,
            teacher_id=teacher.id,
            requester_name=learner.name,
            teacher_name=teacher.name,
            skill_id=guitar_skill.id,
            skill_name="guitar",
            status=status,
            proposed_time_slots=[],
            time_slot_history=[],
            status_messages=[],
            previous_session_ids=[],
            **fields,
        )
        db_session.add(match)
        db_session.commit()
        return match

    return _make


@pytest.fixture
def slot():
    """A one-hour slot starting tomorrow at 10:00 UTC."""
    start = (datetime.now(UTC) + timedelta(days=1)).replace(hour=10, minute=0, second=0, microsecond=0)
    return TimeSlot(start_time=start, end_time=start + timedelta(hours=1))


@pytest.fixture
def later_slot(slot):
    return TimeSlot(start_time=slot.start_time + timedelta(days=2), end_time=slot.end_time + timedelta(days=2))
