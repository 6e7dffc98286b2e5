"""Audit log service."""

import contextlib
from uuid import UUID

from fastapi import Request
from sqlalchemy.orm import Session

from ..rate_limit import client_ip
from .models import AuditLog


def audit(
    db: Session,
    request: Request,
    action: str,
    detail: str = "",
    actor_id: UUID | None = None,
    entity_type: str | None = None,
    entity_id: UUID | None = None,
) -> AuditLog:
    """Stage an audit entry; it is committed with the request's transaction."""
    if actor_id is None:
        uid = request.session.get("user_id")
        if uid:
            with contextlib.suppress(ValueError, AttributeError):
                actor_id = UUID(str(uid))

    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        detail=detail,
        ip_address=client_ip(request),
    )
    db.add(entry)
    return entry
