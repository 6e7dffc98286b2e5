"""Match request/response schemas and time-slot helpers."""

from datetime import UTC, datetime
from uuid import UUID

from pydantic import Field, field_validator, model_validator

from ..schemas import CamelModel
from .models import MatchStatus


class TimeSlot(CamelModel):
    start_time: datetime
    end_time: datetime

    @field_validator("start_time", "end_time")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)

    @model_validator(mode="after")
    def _end_after_start(self) -> "TimeSlot":
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time.")
        return self

    def to_doc(self, **extra) -> dict:
        """Stored sub-document shape: ``{startTime, endTime, ...extra}``."""
        doc = {"startTime": self.start_time.isoformat(), "endTime": self.end_time.isoformat()}
        doc.update({k: (str(v) if isinstance(v, UUID) else v) for k, v in extra.items()})
        return doc


class MatchStatusUpdate(CamelModel):
    # Kept as a plain string so unknown values surface as InvalidStatus, not 422
    status: str
    proposed_time_slots: list[TimeSlot] | None = None
    selected_time_slot: TimeSlot | None = None
    message: str | None = Field(None, max_length=2000)


class MatchRequestCreate(CamelModel):
    teacher_id: UUID
    skill_id: UUID
    proposed_time_slots: list[TimeSlot] = Field(default_factory=list)
    message: str | None = Field(None, max_length=2000)


class MatchResponse(CamelModel):
    id: UUID
    requester_id: UUID
    teacher_id: UUID
    requester_name: str | None = None
    teacher_name: str | None = None
    skill_id: UUID | None = None
    skill_name: str
    status: MatchStatus
    rejection_reason: str | None = None
    proposed_time_slots: list[dict] = Field(default_factory=list)
    selected_time_slot: dict | None = None
    time_slot_history: list[dict] = Field(default_factory=list)
    status_messages: list[dict] = Field(default_factory=list)
    current_session_id: UUID | None = None
    previous_session_ids: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("proposed_time_slots", "time_slot_history", "status_messages", "previous_session_ids", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or []


class MatchListItem(CamelModel):
    """A match as seen by one of its parties."""

    id: UUID
    role: str  # "student" or "teacher"
    counterpart_id: UUID
    name: str
    email: str
    expertise: str
    proficiency: str
    status: str
    time_slots: list[dict] = Field(default_factory=list)
    selected_time_slot: dict | None = None
    current_session_id: UUID | None = None
    created_at: datetime | None = None


class GenerateMatchesResult(CamelModel):
    created_as_learner: int
    created_as_teacher: int
    matches_as_teacher: list[MatchResponse] = Field(default_factory=list)
