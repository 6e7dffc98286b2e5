"""Skill inventory reads used by match generation."""

from uuid import UUID

from sqlalchemy.orm import Session

from .models import PROFICIENCY_RANK, Skill


def normalize_skill_name(name: str | None) -> str:
    """Trim and case-fold a skill name for comparison."""
    return (name or "").strip().casefold()


def proficiency_rank(level: str | None) -> int:
    return PROFICIENCY_RANK.get(level or "", 0)


def find_skills(
    db: Session,
    *,
    user_id: UUID | None = None,
    exclude_user_id: UUID | None = None,
    is_teaching: bool | None = None,
    is_learning: bool | None = None,
) -> list[Skill]:
    """Return skill records matching every filter that is not None."""
    query = db.query(Skill)
    if user_id is not None:
        query = query.filter(Skill.user_id == user_id)
    if exclude_user_id is not None:
        query = query.filter(Skill.user_id != exclude_user_id)
    if is_teaching is not None:
        query = query.filter(Skill.is_teaching == is_teaching)
    if is_learning is not None:
        query = query.filter(Skill.is_learning == is_learning)
    return query.order_by(Skill.created_at.asc()).all()


def get_skill(db: Session, skill_id: UUID) -> Skill | None:
    return db.query(Skill).filter(Skill.id == skill_id).first()
