"""Match generation: discover reciprocal teach/learn pairings between users.

For every skill the user is learning, each other user teaching the same
skill (trimmed, case-folded name) at a strictly higher proficiency becomes a
``not_requested`` match. Each such teacher's own learning skills are then
checked against what the user teaches, producing the mirrored matches.

Every triple is persisted in its own SAVEPOINT and guarded by the partial
unique index on (requester_id, teacher_id, skill_name), so concurrent or
repeated runs never create duplicates and one bad record never aborts the run.
"""

import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..skills.models import Skill
from ..skills.service import find_skills, normalize_skill_name, proficiency_rank
from ..users.service import display_name, get_user
from .models import Match, MatchStatus

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    created_as_learner: list[Match] = field(default_factory=list)
    created_as_teacher: list[Match] = field(default_factory=list)
    matches_as_teacher: list[Match] = field(default_factory=list)


def teaches_above(teacher_level: str | None, learner_level: str | None) -> bool:
    """True when the teacher's proficiency strictly exceeds the learner's."""
    return proficiency_rank(teacher_level) > proficiency_rank(learner_level)


def _is_usable(skill: Skill) -> bool:
    return bool(skill.user_id and skill.skill_name and skill.skill_name.strip())


class _NameCache:
    def __init__(self, db: Session) -> None:
        self._db = db
        self._names: dict[UUID, str] = {}

    def __call__(self, user_id: UUID) -> str:
        if user_id not in self._names:
            self._names[user_id] = display_name(get_user(self._db, user_id))
        return self._names[user_id]


def _create_if_absent(
    db: Session,
    requester_id: UUID,
    teacher_id: UUID,
    skill_name: str,
    skill_id: UUID,
    names: _NameCache,
) -> Match | None:
    """Persist one match unless any match already uses the dedup key."""
    try:
        with db.begin_nested():
            exists = (
                db.query(Match.id)
                .filter(
                    Match.requester_id == requester_id,
                    Match.teacher_id == teacher_id,
                    Match.skill_name == skill_name,
                )
                .first()
            )
            if exists:
                return None
            match = Match(
                requester_id=requester_id,
                teacher_id=teacher_id,
                requester_name=names(requester_id),
                teacher_name=names(teacher_id),
                skill_id=skill_id,
                skill_name=skill_name,
                status=MatchStatus.NOT_REQUESTED,
                proposed_time_slots=[],
                time_slot_history=[],
                status_messages=[],
                previous_session_ids=[],
            )
            db.add(match)
        return match
    except IntegrityError:
        logger.info("Match %s -> %s (%s) created concurrently, skipping", requester_id, teacher_id, skill_name)
        return None


def _teaching_index(db: Session, exclude_user_id: UUID) -> dict[str, list[Skill]]:
    """Group every other user's teaching skills by normalised name."""
    index: dict[str, list[Skill]] = {}
    for skill in find_skills(db, exclude_user_id=exclude_user_id, is_teaching=True):
        if not _is_usable(skill):
            logger.warning("Skipping malformed teaching skill %s", skill.id)
            continue
        index.setdefault(normalize_skill_name(skill.skill_name), []).append(skill)
    return index


def _best_teaching_skills(db: Session, user_id: UUID) -> dict[str, Skill]:
    """The user's highest-ranked teaching record per normalised skill name."""
    best: dict[str, Skill] = {}
    for skill in find_skills(db, user_id=user_id, is_teaching=True):
        if not _is_usable(skill):
            continue
        name = normalize_skill_name(skill.skill_name)
        if name not in best or proficiency_rank(skill.proficiency_level) > proficiency_rank(best[name].proficiency_level):
            best[name] = skill
    return best


def _safely(create, *args) -> Match | None:
    try:
        return create(*args)
    except SQLAlchemyError:
        logger.exception("Failed to persist match for %s, continuing", args[1:4])
        return None


def generate_matches(db: Session, user_id: UUID) -> GenerationResult:
    """Create every missing match for ``user_id`` as learner and, reciprocally, as teacher."""
    result = GenerationResult()
    learning_skills = find_skills(db, user_id=user_id, is_learning=True)

    if learning_skills:
        names = _NameCache(db)
        teaching_index = _teaching_index(db, user_id)
        candidate_teachers: dict[UUID, None] = {}

        for learning in learning_skills:
            if not _is_usable(learning):
                logger.warning("Skipping malformed learning skill %s", learning.id)
                continue
            skill_name = normalize_skill_name(learning.skill_name)

            for teaching in teaching_index.get(skill_name, []):
                if not teaches_above(teaching.proficiency_level, learning.proficiency_level):
                    continue
                candidate_teachers.setdefault(teaching.user_id)
                match = _safely(_create_if_absent, db, user_id, teaching.user_id, skill_name, teaching.id, names)
                if match is not None:
                    result.created_as_learner.append(match)

        # Reciprocal pass: what can the user teach back to each candidate teacher?
        my_teaching = _best_teaching_skills(db, user_id)
        for teacher_id in candidate_teachers:
            for their_learning in find_skills(db, user_id=teacher_id, is_learning=True):
                if not _is_usable(their_learning):
                    continue
                skill_name = normalize_skill_name(their_learning.skill_name)
                mine = my_teaching.get(skill_name)
                if mine is None or not teaches_above(mine.proficiency_level, their_learning.proficiency_level):
                    continue
                match = _safely(_create_if_absent, db, teacher_id, user_id, skill_name, mine.id, names)
                if match is not None:
                    result.created_as_teacher.append(match)

        db.flush()

    result.matches_as_teacher = (
        db.query(Match).filter(Match.teacher_id == user_id).order_by(Match.created_at.desc()).all()
    )
    logger.info(
        "Match generation for %s: %d as learner, %d as teacher",
        user_id,
        len(result.created_as_learner),
        len(result.created_as_teacher),
    )
    return result
