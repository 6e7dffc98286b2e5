"""Notification inbox routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..audit.service import audit
from ..database import get_db
from ..dependencies import get_current_user
from ..users.models import User
from .schemas import NotificationResponse
from .service import list_notifications, mark_all_read, mark_read, unread_count

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def inbox(
    limit: int | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notifications = list_notifications(db, user.id, limit)
    return JSONResponse(
        {
            "notifications": [NotificationResponse.model_validate(n).to_wire() for n in notifications],
            "unread": unread_count(db, user.id),
        }
    )


@router.get("/unread-count")
def unread(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return JSONResponse({"count": unread_count(db, user.id)})


@router.put("/mark-all-read")
def read_all(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    changed = mark_all_read(db, user.id)
    audit(db, request, "notifications_read_all", f"count={changed}", actor_id=user.id)
    db.commit()
    return JSONResponse({"ok": True, "updated": changed})


@router.put("/{notification_id}/read")
def read_one(
    notification_id: UUID,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification = mark_read(db, notification_id, user.id)
    db.commit()
    return JSONResponse({"ok": True, "notification": NotificationResponse.model_validate(notification).to_wire()})
