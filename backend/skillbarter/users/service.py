"""User directory lookups (display only)."""

from uuid import UUID

from sqlalchemy.orm import Session

from .models import User


def to_uuid(value) -> UUID | None:
    """Convert a string (or UUID) to UUID, returning None on failure."""
    if isinstance(value, UUID):
        return value
    if not value:
        return None
    try:
        return UUID(str(value))
    except (ValueError, AttributeError):
        return None


def get_user(db: Session, user_id) -> User | None:
    uid = to_uuid(user_id)
    if uid is None:
        return None
    return db.query(User).filter(User.id == uid).first()


def display_name(user: User | None, fallback: str = "Unknown User") -> str:
    if user is None:
        return fallback
    return user.name or user.email or fallback
