"""Match service: lookups, listings, direct match requests, slot bookkeeping."""

import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import DuplicateMatch, NotFound, ValidationError
from ..integrations.push import PushChannel
from ..notifications.models import NotificationType
from ..notifications.service import notify
from ..skills.models import Skill
from ..skills.service import get_skill, normalize_skill_name
from ..users.service import display_name, get_user
from .models import ACTIVE_STATUSES, TERMINAL_STATUSES, Match, MatchStatus
from .schemas import MatchListItem, MatchRequestCreate, TimeSlot

logger = logging.getLogger(__name__)

TEACHING_REQUEST_STATUSES = (MatchStatus.PENDING, MatchStatus.RESCHEDULED, MatchStatus.ACCEPTED)


def get_match(db: Session, match_id: UUID) -> Match | None:
    return db.query(Match).filter(Match.id == match_id).first()


def load_match_for_update(db: Session, match_id: UUID) -> Match:
    match = db.query(Match).filter(Match.id == match_id).with_for_update().first()
    if not match:
        raise NotFound("Match not found")
    return match


# ── Slot / thread bookkeeping ─────────────────────────────────────────


def record_proposal(match: Match, actor_id: UUID, slots: list[TimeSlot], now: datetime) -> None:
    """Replace the proposed slots and append the proposal to the history."""
    match.proposed_time_slots = [slot.to_doc(proposedBy=actor_id) for slot in slots]
    match.time_slot_history = [
        *(match.time_slot_history or []),
        {
            "proposedBy": str(actor_id),
            "proposedAt": now.isoformat(),
            "slots": [slot.to_doc() for slot in slots],
        },
    ]


def record_selection(match: Match, actor_id: UUID, slot: TimeSlot, now: datetime) -> None:
    match.selected_time_slot = slot.to_doc(selectedBy=actor_id, selectedAt=now.isoformat())


def append_message(match: Match, actor_id: UUID, message: str, now: datetime) -> None:
    match.status_messages = [
        *(match.status_messages or []),
        {"userId": str(actor_id), "message": message, "timestamp": now.isoformat()},
    ]


def has_active_sibling(db: Session, match: Match) -> bool:
    return (
        db.query(Match.id)
        .filter(
            Match.id != match.id,
            Match.requester_id == match.requester_id,
            Match.teacher_id == match.teacher_id,
            Match.skill_name == match.skill_name,
            Match.status.in_(ACTIVE_STATUSES),
        )
        .first()
        is not None
    )


def set_match_status(db: Session, match: Match, status: MatchStatus) -> None:
    """Move ``match`` to ``status`` inside a SAVEPOINT.

    Reopening a completed or canceled match while a newer active one exists
    for the same pair and skill raises DuplicateMatch.
    """
    if MatchStatus(match.status) in TERMINAL_STATUSES and status in ACTIVE_STATUSES:
        if has_active_sibling(db, match):
            raise DuplicateMatch("Match already exists")
    try:
        with db.begin_nested():
            match.status = status
    except IntegrityError:
        raise DuplicateMatch("Match already exists") from None


# ── Direct requests ───────────────────────────────────────────────────


def create_match_request(
    db: Session,
    requester_id: UUID,
    payload: MatchRequestCreate,
    *,
    push: PushChannel | None = None,
    now: datetime | None = None,
) -> Match:
    """Open a ``pending`` match with a chosen teacher skill and notify the teacher."""
    now = now or datetime.now(UTC)
    if payload.teacher_id == requester_id:
        raise ValidationError("You cannot request a session with yourself")

    teacher = get_user(db, payload.teacher_id)
    if not teacher:
        raise NotFound("Teacher not found")
    skill = get_skill(db, payload.skill_id)
    if not skill:
        raise NotFound("Skill not found")
    if skill.user_id != teacher.id or not skill.is_teaching:
        raise ValidationError("This skill is not taught by the selected teacher")

    skill_name = normalize_skill_name(skill.skill_name)
    existing = (
        db.query(Match.id)
        .filter(
            Match.requester_id == requester_id,
            Match.teacher_id == teacher.id,
            Match.skill_name == skill_name,
            Match.status.in_(ACTIVE_STATUSES),
        )
        .first()
    )
    if existing:
        raise DuplicateMatch("Match already exists")

    requester_name = display_name(get_user(db, requester_id))
    match = Match(
        requester_id=requester_id,
        teacher_id=teacher.id,
        requester_name=requester_name,
        teacher_name=display_name(teacher),
        skill_id=skill.id,
        skill_name=skill_name,
        status=MatchStatus.PENDING,
        proposed_time_slots=[],
        time_slot_history=[],
        status_messages=[],
        previous_session_ids=[],
    )
    if payload.proposed_time_slots:
        record_proposal(match, requester_id, payload.proposed_time_slots, now)
    if payload.message:
        append_message(match, requester_id, payload.message, now)

    try:
        with db.begin_nested():
            db.add(match)
    except IntegrityError:
        raise DuplicateMatch("Match already exists") from None

    notify(
        db,
        teacher.id,
        NotificationType.NEW_MATCH_REQUEST,
        match.id,
        "New session request",
        f"{requester_name} has requested a {skill_name} session with you.",
        related_model="Match",
        details={"slots": len(payload.proposed_time_slots)},
        push=push,
        now=now,
    )
    logger.info("Match request %s: %s -> %s (%s)", match.id, requester_id, teacher.id, skill_name)
    return match


# ── Listings ───────────────────────────────────────────────────────────


def _teacher_proficiency(db: Session, match: Match) -> str:
    skill = get_skill(db, match.skill_id) if match.skill_id else None
    if skill is None:
        for candidate in db.query(Skill).filter(Skill.user_id == match.teacher_id, Skill.is_teaching == True):  # noqa: E712
            if normalize_skill_name(candidate.skill_name) == match.skill_name:
                skill = candidate
                break
    return (skill.proficiency_level if skill else None) or "Not specified"


def list_matches(db: Session, user_id: UUID, role: str | None = None) -> list[MatchListItem]:
    """Matches of ``user_id``; role "student" or "teacher" narrows to one side."""
    query = db.query(Match)
    if role == "student":
        query = query.filter(Match.requester_id == user_id)
    elif role == "teacher":
        query = query.filter(Match.teacher_id == user_id)
    elif role is None:
        query = query.filter((Match.requester_id == user_id) | (Match.teacher_id == user_id))
    else:
        raise ValidationError("role must be 'student' or 'teacher'")

    items = []
    for match in query.order_by(Match.created_at.desc()).all():
        is_requester = match.requester_id == user_id
        counterpart = get_user(db, match.other_party(user_id))
        items.append(
            MatchListItem(
                id=match.id,
                role="student" if is_requester else "teacher",
                counterpart_id=match.other_party(user_id),
                name=display_name(counterpart),
                email=counterpart.email if counterpart else "No Email",
                expertise=match.skill_name or "Unknown",
                proficiency=_teacher_proficiency(db, match),
                status=str(match.status),
                time_slots=match.proposed_time_slots or [],
                selected_time_slot=match.selected_time_slot,
                current_session_id=match.current_session_id,
                created_at=match.created_at,
            )
        )
    return items


def get_teaching_requests(db: Session, teacher_id: UUID) -> list[Match]:
    return (
        db.query(Match)
        .filter(Match.teacher_id == teacher_id, Match.status.in_(TEACHING_REQUEST_STATUSES))
        .order_by(Match.created_at.desc())
        .all()
    )


def delete_matches_for_skill(db: Session, skill_id: UUID) -> int:
    """Hard-delete the matches that reference a removed skill record."""
    deleted = db.query(Match).filter(Match.skill_id == skill_id).delete(synchronize_session="fetch")
    db.flush()
    logger.info("Deleted %d matches for removed skill %s", deleted, skill_id)
    return deleted
