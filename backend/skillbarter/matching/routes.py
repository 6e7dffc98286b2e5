"""Match routes: generation, direct requests, listings, negotiation."""

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..audit.service import audit
from ..config import settings
from ..database import get_db
from ..dependencies import get_current_user, get_push
from ..integrations.push import PushChannel
from ..rate_limit import limiter, user_or_ip
from ..sessions.schemas import SessionResponse
from ..users.models import User
from .generator import generate_matches
from .negotiation import update_match_status
from .schemas import GenerateMatchesResult, MatchRequestCreate, MatchResponse, MatchStatusUpdate
from .service import create_match_request, get_teaching_requests, list_matches

router = APIRouter(prefix="/matches", tags=["matches"])


@router.post("/generate")
@limiter.limit(settings.rate_limit_generate, key_func=user_or_ip)
def generate(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = generate_matches(db, user.id)
    audit(
        db,
        request,
        "matches_generate",
        f"learner={len(result.created_as_learner)}, teacher={len(result.created_as_teacher)}",
        actor_id=user.id,
    )
    db.commit()
    body = GenerateMatchesResult(
        created_as_learner=len(result.created_as_learner),
        created_as_teacher=len(result.created_as_teacher),
        matches_as_teacher=[MatchResponse.model_validate(m) for m in result.matches_as_teacher],
    )
    return JSONResponse({"ok": True, **body.to_wire()})


@router.post("")
def request_match(
    request: Request,
    payload: MatchRequestCreate,
    user: User = Depends(get_current_user),
    push: PushChannel = Depends(get_push),
    db: Session = Depends(get_db),
):
    match = create_match_request(db, user.id, payload, push=push)
    audit(db, request, "match_request", f"teacher={match.teacher_id}, skill={match.skill_name}",
          actor_id=user.id, entity_type="Match", entity_id=match.id)
    db.commit()
    return JSONResponse({"ok": True, "match": MatchResponse.model_validate(match).to_wire()}, status_code=201)


@router.get("")
def list_user_matches(
    role: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = list_matches(db, user.id, role)
    return JSONResponse({"matches": [item.to_wire() for item in items]})


@router.get("/teaching-requests")
def teaching_requests(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    matches = get_teaching_requests(db, user.id)
    return JSONResponse({"matches": [MatchResponse.model_validate(m).to_wire() for m in matches]})


@router.put("/{match_id}")
def update_status(
    request: Request,
    match_id: UUID,
    payload: MatchStatusUpdate,
    user: User = Depends(get_current_user),
    push: PushChannel = Depends(get_push),
    db: Session = Depends(get_db),
):
    match, session = update_match_status(db, match_id, user.id, payload, push=push)
    audit(db, request, "match_status", f"status={match.status}",
          actor_id=user.id, entity_type="Match", entity_id=match.id)
    db.commit()
    return JSONResponse(
        {
            "ok": True,
            "match": MatchResponse.model_validate(match).to_wire(),
            "session": SessionResponse.model_validate(session).to_wire() if session else None,
        }
    )
