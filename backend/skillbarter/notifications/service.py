"""Notification dispatcher.

Every match/session event lands here. A notification is keyed by
(recipient, type, related entity, UTC day): repeating the same event on the
same day updates the existing row (new text, ``count + 1``, unread again)
instead of inserting a duplicate. Persistence runs in a SAVEPOINT and, like
the live push that follows it, never fails the caller's transition.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import Forbidden, NotFound, UpstreamFailure
from ..integrations.push import PushChannel
from ..sessions.models import SessionStatus, SkillSession
from .models import Notification, NotificationType
from .schemas import NotificationResponse

logger = logging.getLogger(__name__)

# Builders receive the occurrence count for today (1 on first delivery).
TextBuilder = str | Callable[[int], str]


@dataclass(frozen=True)
class NotificationKey:
    recipient_id: UUID
    type: str
    related_id: UUID
    day: date

    @classmethod
    def for_event(
        cls, recipient_id: UUID, type: str, related_id: UUID, now: datetime | None = None
    ) -> "NotificationKey":
        moment = (now or datetime.now(UTC)).astimezone(UTC)
        return cls(recipient_id, str(type), related_id, moment.date())

    @property
    def key(self) -> str:
        return f"{self.type}:{self.related_id}:{self.day.isoformat()}"

    @property
    def day_start(self) -> datetime:
        return datetime.combine(self.day, time.min, tzinfo=UTC)


def _render(builder: TextBuilder, count: int) -> str:
    return builder(count) if callable(builder) else builder


def _upsert(
    db: Session,
    key: NotificationKey,
    title: TextBuilder,
    message: TextBuilder,
    related_model: str | None,
    details: dict | None,
) -> Notification:
    """Insert or bump the row for ``key``; one retry covers a concurrent insert."""
    for attempt in range(2):
        try:
            with db.begin_nested():
                existing = (
                    db.query(Notification)
                    .filter(
                        Notification.user_id == key.recipient_id,
                        Notification.type == key.type,
                        Notification.related_id == key.related_id,
                        Notification.key == key.key,
                        Notification.created_at >= key.day_start,
                    )
                    .with_for_update()
                    .first()
                )
                if existing:
                    count = (existing.count or 0) + 1
                    existing.count = count
                    existing.title = _render(title, count)
                    existing.message = _render(message, count)
                    existing.details = dict(details or {})
                    existing.read = False
                    existing.updated_at = datetime.now(UTC)
                    notification = existing
                else:
                    notification = Notification(
                        user_id=key.recipient_id,
                        type=key.type,
                        title=_render(title, 1),
                        message=_render(message, 1),
                        related_id=key.related_id,
                        related_model=related_model,
                        key=key.key,
                        details=dict(details or {}),
                        read=False,
                        count=1,
                    )
                    db.add(notification)
            return notification
        except IntegrityError:
            if attempt:
                raise
            logger.info("Notification %s inserted concurrently, retrying as update", key.key)
    raise AssertionError("unreachable")


def _push(push: PushChannel | None, notification: Notification) -> None:
    if push is None:
        return
    payload = NotificationResponse.model_validate(notification).to_wire()
    try:
        push.push(str(notification.user_id), payload)
    except UpstreamFailure as exc:
        logger.warning("Live push failed for notification %s: %s", notification.id, exc.detail)
    except Exception:
        logger.exception("Unexpected error pushing notification %s", notification.id)


def notify(
    db: Session,
    recipient_id: UUID,
    type: NotificationType | str,
    related_id: UUID,
    title: TextBuilder,
    message: TextBuilder,
    *,
    related_model: str | None = None,
    details: dict | None = None,
    push: PushChannel | None = None,
    now: datetime | None = None,
) -> Notification | None:
    """Create or refresh today's notification for this event and push it live.

    Returns None when persistence failed; the failure is logged, rolled back
    to the savepoint and not propagated.
    """
    key = NotificationKey.for_event(recipient_id, type, related_id, now)
    try:
        notification = _upsert(db, key, title, message, related_model, details)
    except SQLAlchemyError:
        logger.exception("Failed to persist notification %s for user %s", key.key, recipient_id)
        return None

    logger.debug("Notification %s -> %s (count=%d)", key.key, recipient_id, notification.count)
    _push(push, notification)
    return notification


# ── Inbox ──────────────────────────────────────────────────────────────


def list_notifications(db: Session, user_id: UUID, limit: int | None = None) -> list[Notification]:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id)
        .order_by(Notification.updated_at.desc())
        .limit(limit or settings.notification_list_limit)
        .all()
    )


def unread_count(db: Session, user_id: UUID) -> int:
    return (
        db.query(func.count(Notification.id))
        .filter(Notification.user_id == user_id, Notification.read == False)  # noqa: E712
        .scalar()
        or 0
    )


def mark_all_read(db: Session, user_id: UUID) -> int:
    """Mark every unread notification of ``user_id`` as read. Returns rows changed."""
    changed = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read == False)  # noqa: E712
        .update({Notification.read: True}, synchronize_session="fetch")
    )
    db.flush()
    return changed


def mark_read(db: Session, notification_id: UUID, user_id: UUID) -> Notification:
    notification = db.query(Notification).filter(Notification.id == notification_id).first()
    if not notification:
        raise NotFound("Notification not found")
    if notification.user_id != user_id:
        raise Forbidden("Not authorized to update this notification")
    notification.read = True
    db.flush()
    return notification


# ── Reminders ──────────────────────────────────────────────────────────


def send_session_reminders(
    db: Session,
    push: PushChannel | None = None,
    hours: int | None = None,
    now: datetime | None = None,
) -> int:
    """Remind both parties of every scheduled session starting within ``hours``.

    Called on startup. Returns the number of notifications written.
    """
    now = now or datetime.now(UTC)
    cutoff = now + timedelta(hours=hours if hours is not None else settings.session_reminder_hours)

    sessions = (
        db.query(SkillSession)
        .filter(
            SkillSession.status == SessionStatus.SCHEDULED,
            SkillSession.start_time > now,
            SkillSession.start_time <= cutoff,
        )
        .order_by(SkillSession.start_time.asc())
        .all()
    )

    sent = 0
    for session in sessions:
        when = session.start_time.strftime("%Y-%m-%d %H:%M")
        for recipient_id, other_name in (
            (session.teacher_id, session.student_name),
            (session.student_id, session.teacher_name),
        ):
            notification = notify(
                db,
                recipient_id,
                NotificationType.SESSION_REMINDER,
                session.id,
                "Upcoming session",
                f"Your {session.skill_name} session with {other_name} starts at {when} UTC.",
                related_model="Session",
                details={"startTime": session.start_time.isoformat()},
                push=push,
                now=now,
            )
            if notification is not None:
                sent += 1

    if sent:
        logger.info("Sent %d session reminders for %d sessions", sent, len(sessions))
    return sent
