"""Session model: the scheduled meeting derived from an accepted match."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import UUID

from ..database import Base


class SessionStatus(enum.StrEnum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELED = "canceled"


CLOSED_SESSION_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELED})


class SkillSession(Base):
    __tablename__ = "sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    match_id = Column(
        UUID(as_uuid=True),
        ForeignKey("matches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    title = Column(String(255), nullable=False, default="")

    teacher_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    teacher_name = Column(String(255), default="")
    student_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    student_name = Column(String(255), default="")
    skill_id = Column(UUID(as_uuid=True), nullable=True)
    skill_name = Column(String(255), default="")

    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    meeting_link = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    prerequisites = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(
        SQLEnum(SessionStatus, name="session_status", values_callable=lambda e: [s.value for s in e]),
        default=SessionStatus.SCHEDULED,
        nullable=False,
    )
    cancellation_reason = Column(Text, nullable=True)
    canceled_by = Column(UUID(as_uuid=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    teacher_feedback = Column(Text, nullable=True)
    teacher_feedback_at = Column(DateTime(timezone=True), nullable=True)
    student_rating = Column(Integer, nullable=True)
    student_feedback = Column(Text, nullable=True)
    student_feedback_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        # A match has at most one open (scheduled) session
        Index(
            "uq_sessions_open_match",
            "match_id",
            unique=True,
            postgresql_where=text("status = 'scheduled'"),
            sqlite_where=text("status = 'scheduled'"),
        ),
        Index("idx_sessions_start", "start_time"),
        Index("idx_sessions_status", "status"),
    )

    def is_party(self, user_id) -> bool:
        return user_id in (self.teacher_id, self.student_id)

    def other_party(self, user_id):
        return self.student_id if user_id == self.teacher_id else self.teacher_id
