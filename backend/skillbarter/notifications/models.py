"""In-app notification model."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from ..database import Base


class NotificationType(enum.StrEnum):
    NEW_MATCH_REQUEST = "new_match_request"
    MATCH_ACCEPTED = "match_accepted"
    MATCH_REJECTED = "match_rejected"
    SESSION_PROPOSED = "session_proposed"
    SESSION_RESCHEDULED = "session_rescheduled"
    SESSION_CREATED = "session_created"
    SESSION_UPDATED = "session_updated"
    SESSION_REMINDER = "session_reminder"
    SESSION_CANCELED = "session_canceled"
    SESSION_COMPLETED = "session_completed"
    SESSION_MESSAGE = "session_message"
    FEEDBACK_REQUESTED = "feedback_requested"


class Notification(Base):
    """One row per (recipient, type, subject, UTC day); repeats bump ``count``."""

    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    related_id = Column(UUID(as_uuid=True), nullable=False)
    related_model = Column(String(20), nullable=True)  # "Match" / "Session"
    key = Column(String(255), nullable=False)
    details = Column(JSON, default=dict)
    read = Column(Boolean, default=False, nullable=False)
    count = Column(Integer, default=1, nullable=False)
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
        UniqueConstraint("user_id", "type", "related_id", "key", name="uq_notifications_dedup"),
        Index("idx_notifications_user_read", "user_id", "read"),
        Index("idx_notifications_created", "created_at"),
    )
