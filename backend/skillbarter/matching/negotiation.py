"""Match negotiation state machine.

    not_requested -> pending -> {accepted, rejected, rescheduled} -> {completed, canceled}

Every accepted request is checked against ALLOWED_TRANSITIONS, classified
into a TransitionKind, applied to the match, handed to the session lifecycle
when a slot was agreed, and announced to the other party with exactly one
notification.
"""

import enum
import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.orm import Session

from ..errors import Forbidden, InvalidStatus, InvalidTransition
from ..integrations.push import PushChannel
from ..notifications.models import NotificationType
from ..notifications.service import notify
from ..sessions.models import SkillSession
from ..sessions.service import create_or_update_session
from .models import Match, MatchStatus
from .schemas import MatchStatusUpdate, TimeSlot
from .service import (
    append_message,
    load_match_for_update,
    record_proposal,
    record_selection,
    set_match_status,
)

logger = logging.getLogger(__name__)


class TransitionKind(enum.StrEnum):
    PROPOSAL = "proposal"
    ACCEPTANCE = "acceptance"
    RESCHEDULE = "reschedule"
    REJECTION = "rejection"
    COMPLETION = "completion"
    MESSAGE = "message"


# Targets a caller may request through update_match_status.
REQUESTABLE_STATUSES = frozenset(
    {
        MatchStatus.PENDING,
        MatchStatus.ACCEPTED,
        MatchStatus.REJECTED,
        MatchStatus.RESCHEDULED,
        MatchStatus.COMPLETED,
    }
)

# Self-loops carry counter-proposals, implicit reschedules and message-only updates.
ALLOWED_TRANSITIONS: dict[MatchStatus, frozenset[MatchStatus]] = {
    MatchStatus.NOT_REQUESTED: frozenset({MatchStatus.PENDING}),
    MatchStatus.PENDING: frozenset(
        {MatchStatus.PENDING, MatchStatus.ACCEPTED, MatchStatus.REJECTED, MatchStatus.RESCHEDULED}
    ),
    MatchStatus.ACCEPTED: frozenset({MatchStatus.ACCEPTED, MatchStatus.RESCHEDULED, MatchStatus.COMPLETED}),
    MatchStatus.RESCHEDULED: frozenset(
        {MatchStatus.RESCHEDULED, MatchStatus.ACCEPTED, MatchStatus.REJECTED, MatchStatus.COMPLETED}
    ),
    MatchStatus.REJECTED: frozenset({MatchStatus.REJECTED}),
    # Repeat bookings between the same pair reopen a completed or canceled match
    MatchStatus.COMPLETED: frozenset({MatchStatus.COMPLETED, MatchStatus.PENDING, MatchStatus.ACCEPTED}),
    MatchStatus.CANCELED: frozenset({MatchStatus.PENDING, MatchStatus.ACCEPTED, MatchStatus.RESCHEDULED}),
}

NOTIFICATION_FOR_KIND: dict[TransitionKind, NotificationType] = {
    TransitionKind.PROPOSAL: NotificationType.SESSION_PROPOSED,
    TransitionKind.ACCEPTANCE: NotificationType.MATCH_ACCEPTED,
    TransitionKind.RESCHEDULE: NotificationType.SESSION_RESCHEDULED,
    TransitionKind.REJECTION: NotificationType.MATCH_REJECTED,
    TransitionKind.COMPLETION: NotificationType.SESSION_COMPLETED,
    TransitionKind.MESSAGE: NotificationType.SESSION_MESSAGE,
}


def classify_transition(
    prev_status: MatchStatus,
    new_status: MatchStatus,
    has_selected_slot: bool,
    has_proposed_slots: bool = False,
) -> TransitionKind:
    """Decide what kind of event a status request represents.

    A reschedule is either an explicit ``rescheduled`` request, or a new
    selected slot arriving on a match that is already ``accepted``.
    """
    if new_status == MatchStatus.RESCHEDULED:
        return TransitionKind.RESCHEDULE
    if new_status == MatchStatus.ACCEPTED:
        if prev_status == MatchStatus.ACCEPTED:
            return TransitionKind.RESCHEDULE if has_selected_slot else TransitionKind.MESSAGE
        return TransitionKind.ACCEPTANCE
    if new_status == MatchStatus.PENDING:
        if prev_status == MatchStatus.PENDING and not has_proposed_slots:
            return TransitionKind.MESSAGE
        return TransitionKind.PROPOSAL
    if new_status == MatchStatus.REJECTED:
        return TransitionKind.MESSAGE if prev_status == MatchStatus.REJECTED else TransitionKind.REJECTION
    if new_status == MatchStatus.COMPLETED:
        return TransitionKind.MESSAGE if prev_status == MatchStatus.COMPLETED else TransitionKind.COMPLETION
    raise InvalidStatus(f"Invalid status value: {new_status}")


def parse_requested_status(value: str | None) -> MatchStatus:
    try:
        status = MatchStatus(value)
    except ValueError:
        raise InvalidStatus(f"Invalid status value: {value!r}") from None
    if status not in REQUESTABLE_STATUSES:
        raise InvalidStatus(f"Invalid status value: {value!r}")
    return status


def _actor_name(match: Match, actor_id: UUID) -> str:
    name = match.requester_name if actor_id == match.requester_id else match.teacher_name
    return name or "Your match"


def _slot_label(slot: TimeSlot | None) -> str:
    return slot.start_time.strftime("%Y-%m-%d %H:%M UTC") if slot else "a new time"


def _texts(kind: TransitionKind, match: Match, actor: str, update: MatchStatusUpdate):
    skill = match.skill_name
    if kind is TransitionKind.PROPOSAL:
        n_slots = len(update.proposed_time_slots or [])
        return "New session proposal", lambda n: (
            f"{actor} proposed {n_slots or 'new'} time slot(s) for {skill}."
            + (f" ({n} updates today)" if n > 1 else "")
        )
    if kind is TransitionKind.ACCEPTANCE:
        return "Match accepted", f"{actor} accepted your {skill} session request."
    if kind is TransitionKind.RESCHEDULE:
        return "Session rescheduled", f"{actor} proposed {_slot_label(update.selected_time_slot)} for your {skill} session."
    if kind is TransitionKind.REJECTION:
        reason = f" Reason: {update.message}" if update.message else ""
        return "Match declined", f"{actor} declined your {skill} session request.{reason}"
    if kind is TransitionKind.COMPLETION:
        return "Session completed", f"{actor} marked your {skill} match as completed."
    preview = (update.message or "")[:140]
    return "New message", lambda n: f"{actor}: {preview}" + (f" (+{n - 1} more today)" if n > 1 else "")


def update_match_status(
    db: Session,
    match_id: UUID,
    actor_id: UUID,
    update: MatchStatusUpdate,
    *,
    push: PushChannel | None = None,
    now: datetime | None = None,
) -> tuple[Match, SkillSession | None]:
    """Apply one negotiation step requested by ``actor_id``.

    Raises NotFound, Forbidden, InvalidStatus or InvalidTransition before any
    change. DuplicateMatch (reopening beside a newer active match) and
    SessionAlreadyActive surface mid-step, in which case the caller must roll
    back.
    """
    now = now or datetime.now(UTC)
    match = load_match_for_update(db, match_id)
    if not match.is_party(actor_id):
        raise Forbidden("Not authorized to update this match")

    new_status = parse_requested_status(update.status)
    prev_status = MatchStatus(match.status)
    if new_status not in ALLOWED_TRANSITIONS[prev_status]:
        raise InvalidTransition(f"Cannot change match status from {prev_status} to {new_status}")

    slot = update.selected_time_slot
    kind = classify_transition(prev_status, new_status, slot is not None, bool(update.proposed_time_slots))

    if new_status == MatchStatus.PENDING and update.proposed_time_slots:
        record_proposal(match, actor_id, update.proposed_time_slots, now)
    if new_status in (MatchStatus.ACCEPTED, MatchStatus.RESCHEDULED) and slot is not None:
        record_selection(match, actor_id, slot, now)
    if new_status == MatchStatus.REJECTED and update.message:
        match.rejection_reason = update.message
    if update.message:
        append_message(match, actor_id, update.message, now)

    set_match_status(db, match, new_status)

    session = None
    if new_status in (MatchStatus.ACCEPTED, MatchStatus.RESCHEDULED) and slot is not None:
        # Confirming an outstanding reschedule moves the existing session too
        is_reschedule = kind is TransitionKind.RESCHEDULE or prev_status == MatchStatus.RESCHEDULED
        session = create_or_update_session(db, match, slot, is_reschedule=is_reschedule)

    title, message = _texts(kind, match, _actor_name(match, actor_id), update)
    notify(
        db,
        match.other_party(actor_id),
        NOTIFICATION_FOR_KIND[kind],
        match.id,
        title,
        message,
        related_model="Match",
        details={
            "status": str(new_status),
            "previousStatus": str(prev_status),
            "sessionId": str(session.id) if session else None,
        },
        push=push,
        now=now,
    )

    logger.info("Match %s: %s -> %s (%s) by %s", match.id, prev_status, new_status, kind, actor_id)
    return match, session
