"""
Notifications Router - /me/notifications endpoints.

Mentions and assignments for the signed-in agent.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.deps import get_current_session, get_db, require_csrf_header
from app.schemas.auth import UserSession
from app.services import notification_service


router = APIRouter()


class NotificationRead(BaseModel):
    """Notification response."""
    id: UUID
    ticket_id: UUID | None
    type: str
    title: str
    message: str
    is_read: bool
    read_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


@router.get("/notifications", response_model=list[NotificationRead])
def list_notifications(
    unread_only: bool = False,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    """Newest first."""
    notifications = notification_service.get_notifications(
        db, session.user_id, unread_only=unread_only, limit=limit
    )
    return [NotificationRead.model_validate(n) for n in notifications]


@router.post(
    "/notifications/{notification_id}/read",
    response_model=NotificationRead,
    dependencies=[Depends(require_csrf_header)],
)
def mark_notification_read(
    notification_id: UUID,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
):
    notification = notification_service.mark_read(db, notification_id, session.user_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return NotificationRead.model_validate(notification)
