"""Skill inventory model and proficiency levels."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database import Base


class ProficiencyLevel(enum.StrEnum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    EXPERT = "Expert"


# Unrecognised levels rank 0, below Beginner.
PROFICIENCY_RANK: dict[str, int] = {
    ProficiencyLevel.BEGINNER: 1,
    ProficiencyLevel.INTERMEDIATE: 2,
    ProficiencyLevel.EXPERT: 3,
}


class Skill(Base):
    __tablename__ = "skills"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    skill_name = Column(String(255), nullable=False)
    # Plain string: records written by older clients may carry levels outside the enum
    proficiency_level = Column(String(20), nullable=True)
    is_teaching = Column(Boolean, default=False, nullable=False)
    is_learning = Column(Boolean, default=False, nullable=False)
    description = Column(Text, default="")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )

    user = relationship("User", back_populates="skills")

    __table_args__ = (
        Index("idx_skills_user_learning", "user_id", "is_learning"),
        Index("idx_skills_teaching", "is_teaching"),
    )
