"""Initial schema: users, skills, matches, sessions, notifications, audit logs.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

MATCH_STATUSES = ("not_requested", "pending", "accepted", "rejected", "rescheduled", "completed", "canceled")
SESSION_STATUSES = ("scheduled", "completed", "canceled")
ACTIVE_MATCH_SQL = "status IN ('accepted', 'not_requested', 'pending', 'rescheduled')"


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "skills",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("skill_name", sa.String(255), nullable=False),
        sa.Column("proficiency_level", sa.String(20), nullable=True),
        sa.Column("is_teaching", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_learning", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("description", sa.Text(), server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_skills_user_learning", "skills", ["user_id", "is_learning"])
    op.create_index("idx_skills_teaching", "skills", ["is_teaching"])

    op.create_table(
        "matches",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("requester_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("teacher_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("requester_name", sa.String(255), server_default=""),
        sa.Column("teacher_name", sa.String(255), server_default=""),
        sa.Column("skill_id", UUID(as_uuid=True), sa.ForeignKey("skills.id", ondelete="CASCADE"), nullable=True),
        sa.Column("skill_name", sa.String(255), nullable=False),
        sa.Column("status", sa.Enum(*MATCH_STATUSES, name="match_status"), nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("proposed_time_slots", JSONB(), server_default="[]"),
        sa.Column("selected_time_slot", JSONB(), nullable=True),
        sa.Column("time_slot_history", JSONB(), server_default="[]"),
        sa.Column("status_messages", JSONB(), server_default="[]"),
        sa.Column("current_session_id", UUID(as_uuid=True), nullable=True),
        sa.Column("previous_session_ids", JSONB(), server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("requester_id <> teacher_id", name="ck_matches_distinct_parties"),
    )
    op.create_index("ix_matches_requester_id", "matches", ["requester_id"])
    op.create_index("ix_matches_teacher_id", "matches", ["teacher_id"])
    op.create_index("ix_matches_skill_id", "matches", ["skill_id"])
    op.create_index("idx_matches_status", "matches", ["status"])
    op.create_index(
        "uq_matches_active_pair_skill",
        "matches",
        ["requester_id", "teacher_id", "skill_name"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_MATCH_SQL),
    )

    op.create_table(
        "sessions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("match_id", UUID(as_uuid=True), sa.ForeignKey("matches.id", ondelete="SET NULL"), nullable=True),
        sa.Column("title", sa.String(255), nullable=False, server_default=""),
        sa.Column("teacher_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("teacher_name", sa.String(255), server_default=""),
        sa.Column("student_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("student_name", sa.String(255), server_default=""),
        sa.Column("skill_id", UUID(as_uuid=True), nullable=True),
        sa.Column("skill_name", sa.String(255), server_default=""),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("meeting_link", sa.String(500), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("prerequisites", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.Enum(*SESSION_STATUSES, name="session_status"), nullable=False),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("canceled_by", UUID(as_uuid=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("teacher_feedback", sa.Text(), nullable=True),
        sa.Column("teacher_feedback_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("student_rating", sa.Integer(), nullable=True),
        sa.Column("student_feedback", sa.Text(), nullable=True),
        sa.Column("student_feedback_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_sessions_match_id", "sessions", ["match_id"])
    op.create_index("ix_sessions_teacher_id", "sessions", ["teacher_id"])
    op.create_index("ix_sessions_student_id", "sessions", ["student_id"])
    op.create_index("idx_sessions_start", "sessions", ["start_time"])
    op.create_index("idx_sessions_status", "sessions", ["status"])
    op.create_index(
        "uq_sessions_open_match",
        "sessions",
        ["match_id"],
        unique=True,
        postgresql_where=sa.text("status = 'scheduled'"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("related_id", UUID(as_uuid=True), nullable=False),
        sa.Column("related_model", sa.String(20), nullable=True),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("details", JSONB(), server_default="{}"),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "type", "related_id", "key", name="uq_notifications_dedup"),
    )
    op.create_index("idx_notifications_user_read", "notifications", ["user_id", "read"])
    op.create_index("idx_notifications_created", "notifications", ["created_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("actor_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(20), nullable=True),
        sa.Column("entity_id", UUID(as_uuid=True), nullable=True),
        sa.Column("detail", sa.Text(), server_default=""),
        sa.Column("ip_address", sa.String(45), server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("notifications")
    op.drop_index("uq_sessions_open_match", table_name="sessions")
    op.drop_table("sessions")
    op.drop_index("uq_matches_active_pair_skill", table_name="matches")
    op.drop_table("matches")
    op.drop_table("skills")
    op.drop_table("users")
    sa.Enum(name="session_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="match_status").drop(op.get_bind(), checkfirst=True)
