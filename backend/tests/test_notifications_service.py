"""Tests for the notification dispatcher, inbox and reminders."""

import uuid
from datetime import UTC, datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from skillbarter.errors import Forbidden, NotFound
from skillbarter.notifications import service
from skillbarter.notifications.models import Notification, NotificationType
from skillbarter.notifications.service import (
    NotificationKey,
    list_notifications,
    mark_all_read,
    mark_read,
    notify,
    send_session_reminders,
    unread_count,
)
from skillbarter.sessions.models import SessionStatus, SkillSession

NOON = datetime(2026, 3, 14, 12, 0, tzinfo=UTC)


class TestNotificationKey:
    def test_key_embeds_type_subject_and_utc_day(self):
        related = uuid.uuid4()
        key = NotificationKey.for_event(uuid.uuid4(), NotificationType.MATCH_ACCEPTED, related, NOON)
        assert key.key == f"match_accepted:{related}:2026-03-14"
        assert key.day_start == datetime(2026, 3, 14, tzinfo=UTC)

    def test_day_is_computed_in_utc(self):
        late_evening_elsewhere = datetime(2026, 3, 14, 20, 0, tzinfo=UTC).astimezone(timezone(timedelta(hours=5)))
        key = NotificationKey.for_event(uuid.uuid4(), "session_message", uuid.uuid4(), late_evening_elsewhere)
        assert key.day.isoformat() == "2026-03-14"


class TestNotify:
    def test_first_event_inserts_row(self, db_session, learner, push):
        related = uuid.uuid4()

        notification = notify(
            db_session, learner.id, NotificationType.SESSION_PROPOSED, related, "Title", "Body", push=push
        )
        db_session.commit()

        assert notification.count == 1
        assert notification.read is False
        assert db_session.query(Notification).count() == 1
        assert push.pushed[0][0] == str(learner.id)
        assert push.pushed[0][1]["relatedId"] == str(related)

    def test_same_event_same_day_updates_in_place(self, db_session, learner):
        related = uuid.uuid4()
        notify(db_session, learner.id, "session_proposed", related, "First", "first body")
        mark_all_read(db_session, learner.id)

        notification = notify(
            db_session, learner.id, "session_proposed", related, "Second", lambda n: f"revised {n} times"
        )
        db_session.commit()

        rows = db_session.query(Notification).all()
        assert len(rows) == 1
        assert notification.count == 2
        assert notification.title == "Second"
        assert notification.message == "revised 2 times"
        assert notification.read is False

    def test_different_day_creates_new_row(self, db_session, learner):
        related = uuid.uuid4()
        notify(db_session, learner.id, "session_proposed", related, "t", "m", now=NOON - timedelta(days=1))
        notify(db_session, learner.id, "session_proposed", related, "t", "m", now=NOON)
        db_session.commit()

        assert db_session.query(Notification).count() == 2

    def test_different_type_creates_new_row(self, db_session, learner):
        related = uuid.uuid4()
        notify(db_session, learner.id, "session_proposed", related, "t", "m")
        notify(db_session, learner.id, "session_message", related, "t", "m")

        assert db_session.query(Notification).count() == 2

    def test_push_failure_is_swallowed(self, db_session, learner, failing_push):
        notification = notify(db_session, learner.id, "session_message", uuid.uuid4(), "t", "m", push=failing_push)
        assert notification is not None
        assert db_session.query(Notification).count() == 1

    def test_persistence_failure_is_swallowed(self, db_session, learner, push):
        with patch.object(service, "_upsert", side_effect=OperationalError("INSERT", {}, Exception("boom"))):
            result = notify(db_session, learner.id, "session_message", uuid.uuid4(), "t", "m", push=push)

        assert result is None
        assert push.pushed == []


class TestInbox:
    def test_unread_count_and_mark_all_read(self, db_session, learner, teacher):
        for _ in range(3):
            notify(db_session, learner.id, "session_message", uuid.uuid4(), "t", "m")
        notify(db_session, teacher.id, "session_message", uuid.uuid4(), "t", "m")
        db_session.commit()

        assert unread_count(db_session, learner.id) == 3
        assert mark_all_read(db_session, learner.id) == 3
        assert unread_count(db_session, learner.id) == 0
        # Idempotent
        assert mark_all_read(db_session, learner.id) == 0
        assert unread_count(db_session, teacher.id) == 1

    def test_list_is_limited_and_scoped(self, db_session, learner, teacher):
        for _ in range(4):
            notify(db_session, learner.id, "session_message", uuid.uuid4(), "t", "m")
        notify(db_session, teacher.id, "session_message", uuid.uuid4(), "t", "m")

        assert len(list_notifications(db_session, learner.id, limit=2)) == 2
        assert all(n.user_id == learner.id for n in list_notifications(db_session, learner.id))

    def test_mark_read_by_recipient(self, db_session, learner):
        notification = notify(db_session, learner.id, "session_message", uuid.uuid4(), "t", "m")

        assert mark_read(db_session, notification.id, learner.id).read is True

    def test_mark_read_by_someone_else(self, db_session, learner, teacher):
        notification = notify(db_session, learner.id, "session_message", uuid.uuid4(), "t", "m")

        with pytest.raises(Forbidden):
            mark_read(db_session, notification.id, teacher.id)

    def test_mark_read_unknown(self, db_session, learner):
        with pytest.raises(NotFound):
            mark_read(db_session, uuid.uuid4(), learner.id)


class TestSessionReminders:
    def _session(self, db_session, learner, teacher, start, status=SessionStatus.SCHEDULED):
        session = SkillSession(
            title="Guitar session",
            teacher_id=teacher.id,
            teacher_name=teacher.name,
            student_id=learner.id,
            student_name=learner.name,
            skill_name="Guitar",
            start_time=start,
            end_time=start + timedelta(hours=1),
            status=status,
        )
        db_session.add(session)
        db_session.commit()
        return session

    def test_reminds_both_parties_of_upcoming_sessions(self, db_session, learner, teacher, push):
        self._session(db_session, learner, teacher, NOON + timedelta(hours=3))
        self._session(db_session, learner, teacher, NOON + timedelta(days=3))
        self._session(db_session, learner, teacher, NOON + timedelta(hours=5), SessionStatus.CANCELED)

        sent = send_session_reminders(db_session, push, hours=24, now=NOON)
        db_session.commit()

        assert sent == 2
        assert push.types_for(learner.id) == ["session_reminder"]
        assert push.types_for(teacher.id) == ["session_reminder"]

    def test_rerun_same_day_bumps_instead_of_duplicating(self, db_session, learner, teacher):
        self._session(db_session, learner, teacher, NOON + timedelta(hours=3))

        send_session_reminders(db_session, hours=24, now=NOON)
        send_session_reminders(db_session, hours=24, now=NOON + timedelta(minutes=5))
        db_session.commit()

        rows = db_session.query(Notification).all()
        assert len(rows) == 2
        assert {r.count for r in rows} == {2}
