"""Shared FastAPI dependencies."""

from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .database import get_db
from .integrations.push import NullPushChannel, PushChannel
from .integrations.rewards import NullRewardsLedger, RewardsLedger
from .users.models import User


class AuthRequired(Exception):
    """Raised when user is not authenticated. Handled by exception handler in main.py."""

    pass


def get_push(request: Request) -> PushChannel:
    """Get the live push channel from app state."""
    return getattr(request.app.state, "push", None) or NullPushChannel()


def get_rewards(request: Request) -> RewardsLedger:
    return getattr(request.app.state, "rewards", None) or NullRewardsLedger()


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """Get the authenticated user from the signed cookie session."""
    user_id_str = request.session.get("user_id")
    if not user_id_str:
        raise AuthRequired()
    try:
        user_id = UUID(str(user_id_str))
    except (ValueError, AttributeError):
        request.session.clear()
        raise AuthRequired()
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        request.session.clear()
        raise AuthRequired()
    return user
