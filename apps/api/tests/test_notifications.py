"""Tests for in-app notifications."""

import uuid

import pytest

from app.db.enums import NotificationType, Role
from app.db.models import Notification
from app.services import notification_service


def _notify(db, user, title="Mentioned"):
    notification = notification_service.create_notification(
        db, user_id=user.id, type=NotificationType.MENTION, title=title, message="You were mentioned"
    )
    db.commit()
    return notification


@pytest.mark.asyncio
async def test_list_and_mark_read(db, client_for, agent):
    notification = _notify(db, agent)

    async with client_for(agent) as c:
        listed = await c.get("/me/notifications")
        marked = await c.post(f"/me/notifications/{notification.id}/read")
        unread = await c.get("/me/notifications", params={"unread_only": True})

    assert [n["id"] for n in listed.json()] == [str(notification.id)]
    assert marked.status_code == 200
    assert marked.json()["is_read"] is True
    assert marked.json()["read_at"] is not None
    assert unread.json() == []


@pytest.mark.asyncio
async def test_cannot_read_someone_elses_notification(db, client_for, agent, make_user):
    other = make_user(Role.AGENT)
    notification = _notify(db, other)

    async with client_for(agent) as c:
        response = await c.post(f"/me/notifications/{notification.id}/read")
        missing = await c.post(f"/me/notifications/{uuid.uuid4()}/read")

    assert response.status_code == 404
    assert response.json()["detail"] == "Notification not found"
    assert missing.status_code == 404
    db.refresh(notification)
    assert notification.is_read is False


@pytest.mark.asyncio
async def test_notifications_require_login(client):
    response = await client.get("/me/notifications")
    assert response.status_code == 401


def test_mentions_skip_author_and_customers(db, make_ticket, agent, admin, customer):
    ticket = make_ticket()

    created = notification_service.notify_mentions(db, ticket, agent, [agent.id, admin.id, customer.id, admin.id])
    db.commit()

    assert [n.user_id for n in created] == [admin.id]
    assert db.query(Notification).count() == 1


def test_assignment_notification(db, make_ticket, agent, admin):
    ticket = make_ticket()

    assert notification_service.notify_ticket_assigned(db, ticket, agent.id, agent) is None
    notification = notification_service.notify_ticket_assigned(db, ticket, agent.id, admin)
    db.commit()

    assert notification.type == NotificationType.TICKET_ASSIGNED
    assert notification.ticket_id == ticket.id
    assert "Admin Ada" in notification.message
