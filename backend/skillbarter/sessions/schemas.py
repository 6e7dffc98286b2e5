"""Session request/response schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from ..matching.schemas import TimeSlot
from ..schemas import CamelModel
from .models import SessionStatus


class SessionCreate(CamelModel):
    match_id: UUID
    selected_time_slot: TimeSlot
    title: str | None = Field(None, max_length=255)
    description: str | None = Field(None, max_length=1000)
    meeting_link: str | None = Field(None, max_length=500)
    prerequisites: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=1000)
    is_rescheduling: bool = False


class CancelRequest(CamelModel):
    reason: str = Field("", max_length=500)


class MeetingLinkUpdate(CamelModel):
    meeting_link: str = Field(..., max_length=500)


class TeacherFeedbackRequest(CamelModel):
    feedback: str = Field("", max_length=500)


class StudentFeedbackRequest(CamelModel):
    rating: int
    feedback: str = Field("", max_length=500)


class SessionResponse(CamelModel):
    id: UUID
    match_id: UUID | None = None
    title: str
    teacher_id: UUID
    teacher_name: str | None = None
    student_id: UUID
    student_name: str | None = None
    skill_id: UUID | None = None
    skill_name: str | None = None
    start_time: datetime
    end_time: datetime
    meeting_link: str | None = None
    description: str | None = None
    prerequisites: str | None = None
    notes: str | None = None
    status: SessionStatus
    cancellation_reason: str | None = None
    completed_at: datetime | None = None
    teacher_feedback: str | None = None
    student_rating: int | None = None
    student_feedback: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
