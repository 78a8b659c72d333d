"""
Notification Service - in-app notifications for mentions and assignments.

Triggers add rows to the caller's session without committing so they share
the ticket mutation's transaction.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.enums import STAFF_ROLES, NotificationType
from app.db.models import Notification, Ticket, User
from app.utils.datetimes import utc_now


def create_notification(
    db: Session,
    user_id: UUID,
    type: NotificationType,
    title: str,
    message: str,
    ticket_id: Optional[UUID] = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        ticket_id=ticket_id,
        type=type,
        title=title,
        message=message,
    )
    db.add(notification)
    return notification


def get_notifications(
    db: Session,
    user_id: UUID,
    unread_only: bool = False,
    limit: int = 20,
) -> list[Notification]:
    """Get notifications for user, newest first."""
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def mark_read(db: Session, notification_id: UUID, user_id: UUID) -> Optional[Notification]:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user_id,
    ).first()

    if notification and not notification.is_read:
        notification.is_read = True
        notification.read_at = utc_now()
        db.commit()
        db.refresh(notification)

    return notification


def cleanup_old_notifications(db: Session, *, now: datetime | None = None) -> int:
    """
    Delete read notifications older than the retention window.

    Unread notifications are kept regardless of age. Returns count deleted.
    """
    cutoff = (now or utc_now()) - timedelta(days=settings.NOTIFICATION_RETENTION_DAYS)
    count = (
        db.query(Notification)
        .filter(
            Notification.is_read.is_(True),
            Notification.read_at.is_not(None),
            Notification.read_at < cutoff,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return count


# =============================================================================
# Notification Triggers (called from ticket services)
# =============================================================================


def notify_mentions(
    db: Session,
    ticket: Ticket,
    author: User,
    mentioned_user_ids: Iterable[UUID],
) -> list[Notification]:
    """
    Notify mentioned staff members.

    The author and non-staff ids are dropped; duplicates collapse.
    """
    candidate_ids = {user_id for user_id in mentioned_user_ids if user_id != author.id}
    if not candidate_ids:
        return []

    recipients = (
        db.query(User)
        .filter(User.id.in_(candidate_ids), User.role.in_(list(STAFF_ROLES)))
        .all()
    )
    return [
        create_notification(
            db,
            user_id=user.id,
            type=NotificationType.MENTION,
            title=f"You were mentioned in ticket #{ticket.ticket_number}",
            message=f'{author.display_name} mentioned you in a comment on "{ticket.subject}"',
            ticket_id=ticket.id,
        )
        for user in recipients
    ]


def notify_ticket_assigned(
    db: Session,
    ticket: Ticket,
    assignee_id: UUID,
    actor: User | None,
) -> Optional[Notification]:
    """Notify the new assignee unless they assigned the ticket to themselves."""
    if actor is not None and actor.id == assignee_id:
        return None
    actor_name = actor.display_name if actor else "Automation"
    return create_notification(
        db,
        user_id=assignee_id,
        type=NotificationType.TICKET_ASSIGNED,
        title=f"Ticket #{ticket.ticket_number} assigned to you",
        message=f'{actor_name} assigned "{ticket.subject}" to you',
        ticket_id=ticket.id,
    )
