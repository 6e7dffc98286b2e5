"""Match model: the negotiation record between a learner and a teacher for one skill."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import UUID

from ..database import Base


class MatchStatus(enum.StrEnum):
    NOT_REQUESTED = "not_requested"
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"
    CANCELED = "canceled"


TERMINAL_STATUSES = frozenset({MatchStatus.REJECTED, MatchStatus.COMPLETED, MatchStatus.CANCELED})
ACTIVE_STATUSES = frozenset(s for s in MatchStatus if s not in TERMINAL_STATUSES)

_ACTIVE_SQL = "status IN ({})".format(", ".join(f"'{s.value}'" for s in sorted(ACTIVE_STATUSES)))


class Match(Base):
    __tablename__ = "matches"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    requester_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    teacher_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    requester_name = Column(String(255), default="")
    teacher_name = Column(String(255), default="")

    # skill_id points at the teacher's skill record used for display
    skill_id = Column(
        UUID(as_uuid=True),
        ForeignKey("skills.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    skill_name = Column(String(255), nullable=False)  # normalised, part of the dedup key

    status = Column(
        SQLEnum(MatchStatus, name="match_status", values_callable=lambda e: [s.value for s in e]),
        default=MatchStatus.NOT_REQUESTED,
        nullable=False,
    )
    rejection_reason = Column(Text, nullable=True)

    # Slot sub-documents keep their camelCase wire shape:
    #   proposed_time_slots: [{startTime, endTime, proposedBy}]
    #   selected_time_slot:  {startTime, endTime, selectedBy, selectedAt}
    #   time_slot_history:   [{proposedBy, proposedAt, slots: [{startTime, endTime}]}]
    #   status_messages:     [{userId, message, timestamp}]
    proposed_time_slots = Column(JSON, default=list)
    selected_time_slot = Column(JSON, nullable=True)
    time_slot_history = Column(JSON, default=list)
    status_messages = Column(JSON, default=list)

    current_session_id = Column(UUID(as_uuid=True), nullable=True)
    previous_session_ids = Column(JSON, default=list)

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        CheckConstraint("requester_id <> teacher_id", name="ck_matches_distinct_parties"),
        # At most one active match per (requester, teacher, skill)
        Index(
            "uq_matches_active_pair_skill",
            "requester_id",
            "teacher_id",
            "skill_name",
            unique=True,
            postgresql_where=text(_ACTIVE_SQL),
            sqlite_where=text(_ACTIVE_SQL),
        ),
        Index("idx_matches_status", "status"),
    )

    def is_party(self, user_id) -> bool:
        return user_id in (self.requester_id, self.teacher_id)

    def other_party(self, user_id):
        return self.teacher_id if user_id == self.requester_id else self.requester_id
