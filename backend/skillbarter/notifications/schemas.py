"""Notification response schemas."""

from datetime import datetime
from uuid import UUID

from ..schemas import CamelModel


class NotificationResponse(CamelModel):
    id: UUID
    user_id: UUID
    type: str
    title: str
    message: str
    related_id: UUID
    related_model: str | None = None
    details: dict | None = None
    read: bool
    count: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
