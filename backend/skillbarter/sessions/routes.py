"""Session routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..audit.service import audit
from ..database import get_db
from ..dependencies import get_current_user, get_push, get_rewards
from ..integrations.push import PushChannel
from ..integrations.rewards import RewardsLedger
from ..matching.schemas import MatchResponse
from ..users.models import User
from .schemas import (
    CancelRequest,
    MeetingLinkUpdate,
    SessionCreate,
    SessionResponse,
    StudentFeedbackRequest,
    TeacherFeedbackRequest,
)
from .service import (
    cancel_session,
    complete_session,
    create_session,
    get_session_for,
    list_sessions,
    report_feedback,
    report_session_completed,
    submit_student_feedback,
    submit_teacher_feedback,
    update_meeting_link,
)

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _session_json(session) -> dict:
    return SessionResponse.model_validate(session).to_wire()


@router.post("")
def book_session(
    request: Request,
    payload: SessionCreate,
    user: User = Depends(get_current_user),
    push: PushChannel = Depends(get_push),
    db: Session = Depends(get_db),
):
    session, match = create_session(db, user.id, payload, push=push)
    audit(db, request, "session_create", f"match={match.id}, reschedule={payload.is_rescheduling}",
          actor_id=user.id, entity_type="Session", entity_id=session.id)
    db.commit()
    return JSONResponse(
        {"ok": True, "session": _session_json(session), "match": MatchResponse.model_validate(match).to_wire()},
        status_code=201,
    )


@router.get("")
def list_user_sessions(
    status: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return JSONResponse({"sessions": [_session_json(s) for s in list_sessions(db, user.id, status)]})


@router.get("/{session_id}")
def get_one(
    session_id: UUID,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return JSONResponse({"session": _session_json(get_session_for(db, session_id, user.id))})


@router.put("/{session_id}/complete")
def complete(
    request: Request,
    session_id: UUID,
    user: User = Depends(get_current_user),
    push: PushChannel = Depends(get_push),
    rewards: RewardsLedger = Depends(get_rewards),
    db: Session = Depends(get_db),
):
    session = complete_session(db, session_id, user.id, push=push)
    audit(db, request, "session_complete", actor_id=user.id, entity_type="Session", entity_id=session.id)
    db.commit()
    report_session_completed(rewards, session)
    return JSONResponse({"ok": True, "session": _session_json(session)})


@router.put("/{session_id}/cancel")
def cancel(
    request: Request,
    session_id: UUID,
    payload: CancelRequest,
    user: User = Depends(get_current_user),
    push: PushChannel = Depends(get_push),
    db: Session = Depends(get_db),
):
    session = cancel_session(db, session_id, user.id, payload.reason, push=push)
    audit(db, request, "session_cancel", session.cancellation_reason or "",
          actor_id=user.id, entity_type="Session", entity_id=session.id)
    db.commit()
    return JSONResponse({"ok": True, "session": _session_json(session)})


@router.put("/{session_id}/meeting-link")
def meeting_link(
    request: Request,
    session_id: UUID,
    payload: MeetingLinkUpdate,
    user: User = Depends(get_current_user),
    push: PushChannel = Depends(get_push),
    db: Session = Depends(get_db),
):
    session = update_meeting_link(db, session_id, user.id, payload.meeting_link, push=push)
    audit(db, request, "session_meeting_link", actor_id=user.id, entity_type="Session", entity_id=session.id)
    db.commit()
    return JSONResponse({"ok": True, "session": _session_json(session)})


@router.post("/{session_id}/feedback/teacher")
def teacher_feedback(
    request: Request,
    session_id: UUID,
    payload: TeacherFeedbackRequest,
    user: User = Depends(get_current_user),
    rewards: RewardsLedger = Depends(get_rewards),
    db: Session = Depends(get_db),
):
    session = submit_teacher_feedback(db, session_id, user.id, payload.feedback)
    audit(db, request, "feedback_teacher", actor_id=user.id, entity_type="Session", entity_id=session.id)
    db.commit()
    report_feedback(rewards, session, user.id, "teacher")
    return JSONResponse({"ok": True, "session": _session_json(session)})


@router.post("/{session_id}/feedback/student")
def student_feedback(
    request: Request,
    session_id: UUID,
    payload: StudentFeedbackRequest,
    user: User = Depends(get_current_user),
    rewards: RewardsLedger = Depends(get_rewards),
    db: Session = Depends(get_db),
):
    session = submit_student_feedback(db, session_id, user.id, payload.rating, payload.feedback)
    audit(db, request, "feedback_student", f"rating={payload.rating}",
          actor_id=user.id, entity_type="Session", entity_id=session.id)
    db.commit()
    report_feedback(rewards, session, user.id, "student")
    return JSONResponse({"ok": True, "session": _session_json(session)})
