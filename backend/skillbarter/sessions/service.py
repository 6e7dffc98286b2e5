"""Session lifecycle: booking from a match, completion, cancellation, feedback."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from urllib.parse import urlparse
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import (
    Conflict,
    DuplicateFeedback,
    Forbidden,
    InvalidTransition,
    NotFound,
    SessionAlreadyActive,
    UpstreamFailure,
    ValidationError,
)
from ..integrations.push import PushChannel
from ..integrations.rewards import RewardsLedger
from ..matching.models import Match, MatchStatus
from ..matching.schemas import TimeSlot
from ..matching.service import get_match, load_match_for_update, record_selection, set_match_status
from ..notifications.models import NotificationType
from ..notifications.service import notify
from ..skills.service import get_skill
from ..users.service import display_name, get_user
from .models import CLOSED_SESSION_STATUSES, SessionStatus, SkillSession
from .schemas import SessionCreate

logger = logging.getLogger(__name__)

MAX_FEEDBACK_LENGTH = 500
MAX_REASON_LENGTH = 500

# Match statuses from which the teacher may book a session directly
BOOKABLE_MATCH_STATUSES = frozenset(
    {
        MatchStatus.PENDING,
        MatchStatus.ACCEPTED,
        MatchStatus.RESCHEDULED,
        MatchStatus.COMPLETED,
        MatchStatus.CANCELED,
    }
)


@dataclass
class SessionDetails:
    title: str | None = None
    description: str | None = None
    meeting_link: str | None = None
    prerequisites: str | None = None
    notes: str | None = None


def validate_meeting_link(url: str | None) -> str:
    url = (url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme != "https" or not parsed.netloc:
        raise ValidationError("Meeting link must be a valid https URL")
    return url


def _required_text(value: str | None, what: str, limit: int) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{what} is required")
    if len(text) > limit:
        raise ValidationError(f"{what} must be at most {limit} characters")
    return text


def get_session(db: Session, session_id: UUID) -> SkillSession | None:
    return db.query(SkillSession).filter(SkillSession.id == session_id).first()


def _load_session_for_update(db: Session, session_id: UUID) -> SkillSession:
    session = db.query(SkillSession).filter(SkillSession.id == session_id).with_for_update().first()
    if not session:
        raise NotFound("Session not found")
    return session


def _skill_display_name(db: Session, match: Match) -> str:
    skill = get_skill(db, match.skill_id) if match.skill_id else None
    return skill.skill_name.strip() if skill and skill.skill_name else match.skill_name


def _move(session: SkillSession, slot: TimeSlot, details: SessionDetails) -> None:
    session.start_time = slot.start_time
    session.end_time = slot.end_time
    for field in ("meeting_link", "notes", "description", "prerequisites"):
        value = getattr(details, field)
        if value is not None:
            setattr(session, field, value)
    if details.title:
        session.title = details.title
    if session.status == SessionStatus.CANCELED:
        session.status = SessionStatus.SCHEDULED
        session.cancellation_reason = None
        session.canceled_by = None


def create_or_update_session(
    db: Session,
    match: Match,
    slot: TimeSlot,
    details: SessionDetails | None = None,
    *,
    is_reschedule: bool = False,
) -> SkillSession:
    """Materialise the match's agreed slot as its current session.

    - no current session: create one in ``scheduled``
    - current session closed (completed, or canceled outside a reschedule):
      archive it into ``previous_session_ids`` and create a new one
    - current session open and not a reschedule: SessionAlreadyActive
    - reschedule: move the current session in place, reviving it if canceled

    Sends no notification; callers announce the outcome themselves.
    """
    details = details or SessionDetails()
    if details.meeting_link:
        details.meeting_link = validate_meeting_link(details.meeting_link)

    current = None
    if match.current_session_id:
        current = (
            db.query(SkillSession).filter(SkillSession.id == match.current_session_id).with_for_update().first()
        )
        if current is None:
            logger.warning("Match %s points at missing session %s", match.id, match.current_session_id)
            match.current_session_id = None

    if current is not None:
        revivable = is_reschedule and current.status == SessionStatus.CANCELED
        if current.status in CLOSED_SESSION_STATUSES and not revivable:
            match.previous_session_ids = [*(match.previous_session_ids or []), str(current.id)]
            match.current_session_id = None
        elif not is_reschedule:
            raise SessionAlreadyActive("This match already has an active session")
        else:
            _move(current, slot, details)
            db.flush()
            logger.info("Session %s rescheduled to %s", current.id, slot.start_time.isoformat())
            return current

    skill_name = _skill_display_name(db, match)
    session = SkillSession(
        match_id=match.id,
        title=details.title or f"{skill_name} session",
        teacher_id=match.teacher_id,
        teacher_name=match.teacher_name or display_name(get_user(db, match.teacher_id)),
        student_id=match.requester_id,
        student_name=match.requester_name or display_name(get_user(db, match.requester_id)),
        skill_id=match.skill_id,
        skill_name=skill_name,
        start_time=slot.start_time,
        end_time=slot.end_time,
        meeting_link=details.meeting_link,
        description=details.description,
        prerequisites=details.prerequisites,
        notes=details.notes,
        status=SessionStatus.SCHEDULED,
    )
    try:
        with db.begin_nested():
            db.add(session)
    except IntegrityError:
        raise SessionAlreadyActive("This match already has an active session") from None

    match.current_session_id = session.id
    db.flush()
    logger.info("Session %s created for match %s", session.id, match.id)
    return session


def _report_reward(action: str, call, *args) -> None:
    try:
        call(*args)
    except UpstreamFailure as exc:
        logger.warning("Rewards %s not recorded: %s", action, exc.detail)


def report_session_completed(rewards: RewardsLedger, session: SkillSession) -> None:
    """Tell the rewards ledger about a completion. Call only after commit."""
    _report_reward(
        "session_completed",
        rewards.session_completed,
        str(session.id),
        str(session.teacher_id),
        str(session.student_id),
    )


def report_feedback(rewards: RewardsLedger, session: SkillSession, author_id: UUID, role: str) -> None:
    _report_reward("feedback_submitted", rewards.feedback_submitted, str(session.id), str(author_id), role)


def _mirror_onto_match(db: Session, session: SkillSession, status: MatchStatus) -> Match | None:
    if session.match_id is None:
        return None
    match = get_match(db, session.match_id)
    if match is None:
        return None
    if match.current_session_id == session.id:
        match.status = status
    return match


# ── Operations ────────────────────────────────────────────────────────


def create_session(
    db: Session,
    actor_id: UUID,
    payload: SessionCreate,
    *,
    push: PushChannel | None = None,
    now: datetime | None = None,
) -> tuple[SkillSession, Match]:
    """Teacher books (or, with ``is_rescheduling``, moves) the match's session."""
    now = now or datetime.now(UTC)
    match = load_match_for_update(db, payload.match_id)
    if not match.is_party(actor_id):
        raise Forbidden("Not authorized to schedule a session for this match")
    if actor_id != match.teacher_id:
        raise Forbidden("Only the teacher can schedule a session")
    if MatchStatus(match.status) not in BOOKABLE_MATCH_STATUSES:
        raise InvalidTransition(f"Cannot schedule a session for a {match.status} match")

    details = SessionDetails(
        title=(payload.title or "").strip() or None,
        description=payload.description,
        meeting_link=payload.meeting_link,
        prerequisites=payload.prerequisites,
        notes=payload.notes,
    )
    slot = payload.selected_time_slot
    session = create_or_update_session(db, match, slot, details, is_reschedule=payload.is_rescheduling)

    record_selection(match, actor_id, slot, now)
    set_match_status(db, match, MatchStatus.ACCEPTED)

    when = slot.start_time.strftime("%Y-%m-%d %H:%M UTC")
    teacher = session.teacher_name or "Your teacher"
    if payload.is_rescheduling:
        kind, title, message = (
            NotificationType.SESSION_UPDATED,
            "Session rescheduled",
            f"{teacher} moved your {session.skill_name} session to {when}.",
        )
    else:
        kind, title, message = (
            NotificationType.SESSION_CREATED,
            "Session scheduled",
            f"{teacher} scheduled a {session.skill_name} session with you for {when}.",
        )
    notify(
        db,
        session.student_id,
        kind,
        session.id,
        title,
        message,
        related_model="Session",
        details={"matchId": str(match.id), "startTime": slot.start_time.isoformat()},
        push=push,
        now=now,
    )
    logger.info("Session %s booked by %s (reschedule=%s)", session.id, actor_id, payload.is_rescheduling)
    return session, match


def complete_session(
    db: Session,
    session_id: UUID,
    actor_id: UUID,
    *,
    push: PushChannel | None = None,
    now: datetime | None = None,
) -> SkillSession:
    now = now or datetime.now(UTC)
    session = _load_session_for_update(db, session_id)
    if actor_id != session.teacher_id:
        raise Forbidden("Only the teacher can mark a session as completed")
    if session.status in CLOSED_SESSION_STATUSES:
        raise Conflict(f"Session is already {session.status}")

    session.status = SessionStatus.COMPLETED
    session.completed_at = now
    _mirror_onto_match(db, session, MatchStatus.COMPLETED)
    db.flush()

    notify(
        db,
        session.student_id,
        NotificationType.SESSION_COMPLETED,
        session.id,
        "Session completed",
        f"{session.teacher_name or 'Your teacher'} marked your {session.skill_name} session as completed.",
        related_model="Session",
        push=push,
        now=now,
    )
    for recipient_id, other_name in (
        (session.student_id, session.teacher_name),
        (session.teacher_id, session.student_name),
    ):
        notify(
            db,
            recipient_id,
            NotificationType.FEEDBACK_REQUESTED,
            session.id,
            "How did it go?",
            f"Share your feedback on the {session.skill_name} session with {other_name or 'your partner'}.",
            related_model="Session",
            push=push,
            now=now,
        )

    logger.info("Session %s completed by %s", session.id, actor_id)
    return session


def cancel_session(
    db: Session,
    session_id: UUID,
    actor_id: UUID,
    reason: str | None,
    *,
    push: PushChannel | None = None,
    now: datetime | None = None,
) -> SkillSession:
    now = now or datetime.now(UTC)
    session = _load_session_for_update(db, session_id)
    if not session.is_party(actor_id):
        raise Forbidden("Not authorized to cancel this session")
    reason = _required_text(reason, "Cancellation reason", MAX_REASON_LENGTH)
    if session.status in CLOSED_SESSION_STATUSES:
        raise Conflict(f"Session is already {session.status}")

    session.status = SessionStatus.CANCELED
    session.cancellation_reason = reason
    session.canceled_by = actor_id
    _mirror_onto_match(db, session, MatchStatus.CANCELED)
    db.flush()

    actor = session.teacher_name if actor_id == session.teacher_id else session.student_name
    notify(
        db,
        session.other_party(actor_id),
        NotificationType.SESSION_CANCELED,
        session.id,
        "Session canceled",
        f"{actor or 'Your partner'} canceled the {session.skill_name} session. Reason: {reason}",
        related_model="Session",
        details={"reason": reason},
        push=push,
        now=now,
    )
    logger.info("Session %s canceled by %s", session.id, actor_id)
    return session


def update_meeting_link(
    db: Session,
    session_id: UUID,
    actor_id: UUID,
    url: str | None,
    *,
    push: PushChannel | None = None,
    now: datetime | None = None,
) -> SkillSession:
    session = _load_session_for_update(db, session_id)
    if actor_id != session.teacher_id:
        raise Forbidden("Only the teacher can update the meeting link")
    link = validate_meeting_link(url)
    if session.status != SessionStatus.SCHEDULED:
        raise Conflict(f"Cannot update the meeting link of a {session.status} session")

    session.meeting_link = link
    db.flush()
    notify(
        db,
        session.student_id,
        NotificationType.SESSION_UPDATED,
        session.id,
        "Meeting link updated",
        f"The meeting link for your {session.skill_name} session has been updated.",
        related_model="Session",
        details={"meetingLink": link},
        push=push,
        now=now,
    )
    return session


def submit_teacher_feedback(
    db: Session,
    session_id: UUID,
    actor_id: UUID,
    feedback: str | None,
    *,
    now: datetime | None = None,
) -> SkillSession:
    session = _load_session_for_update(db, session_id)
    if actor_id != session.teacher_id:
        raise Forbidden("Only the teacher can submit teacher feedback")
    feedback = _required_text(feedback, "Feedback", MAX_FEEDBACK_LENGTH)
    if session.status != SessionStatus.COMPLETED:
        raise Conflict("Feedback can only be submitted for completed sessions")
    if session.teacher_feedback:
        raise DuplicateFeedback("Teacher feedback has already been submitted")

    session.teacher_feedback = feedback
    session.teacher_feedback_at = now or datetime.now(UTC)
    db.flush()
    return session


def submit_student_feedback(
    db: Session,
    session_id: UUID,
    actor_id: UUID,
    rating: int | None,
    feedback: str | None,
    *,
    now: datetime | None = None,
) -> SkillSession:
    session = _load_session_for_update(db, session_id)
    if actor_id != session.student_id:
        raise Forbidden("Only the student can submit student feedback")
    if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be an integer between 1 and 5")
    feedback = _required_text(feedback, "Feedback", MAX_FEEDBACK_LENGTH)
    if session.status != SessionStatus.COMPLETED:
        raise Conflict("Feedback can only be submitted for completed sessions")
    if session.student_rating is not None or session.student_feedback:
        raise DuplicateFeedback("Student feedback has already been submitted")

    session.student_rating = rating
    session.student_feedback = feedback
    session.student_feedback_at = now or datetime.now(UTC)
    db.flush()
    return session


# ── Listings ───────────────────────────────────────────────────────────


def list_sessions(db: Session, user_id: UUID, status: str | None = None) -> list[SkillSession]:
    query = db.query(SkillSession).filter(
        (SkillSession.teacher_id == user_id) | (SkillSession.student_id == user_id)
    )
    if status:
        try:
            query = query.filter(SkillSession.status == SessionStatus(status))
        except ValueError:
            raise ValidationError(f"Invalid session status: {status!r}") from None
    return query.order_by(SkillSession.start_time.desc()).all()


def get_session_for(db: Session, session_id: UUID, user_id: UUID) -> SkillSession:
    session = get_session(db, session_id)
    if not session:
        raise NotFound("Session not found")
    if not session.is_party(user_id):
        raise Forbidden("Not authorized to view this session")
    return session
