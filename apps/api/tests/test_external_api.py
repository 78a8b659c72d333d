"""Tests for the partner ticket API (API-key auth)."""

import pytest

from app.db.enums import Channel, Role
from app.db.models import Form, Ticket, User
from app.services import api_key_service


def _bearer(raw_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {raw_key}"}


@pytest.mark.asyncio
async def test_create_ticket_provisions_requester(db, client, api_key):
    key, raw = api_key

    response = await client.post(
        "/api/v1/tickets",
        json={
            "email": "New.Person@Example.com",
            "name": "New Person",
            "subject": "Invoice question",
            "description": "Why was I charged twice?",
        },
        headers=_bearer(raw),
    )

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "NEW"
    assert data["ticket_number"] == 1

    ticket = db.query(Ticket).filter(Ticket.ticket_number == 1).one()
    assert ticket.channel == Channel.API
    requester = db.get(User, ticket.requester_id)
    assert requester.email == "new.person@example.com"
    assert requester.role == Role.USER

    db.refresh(key)
    assert key.usage_count == 1
    assert key.last_used_at is not None


@pytest.mark.asyncio
async def test_create_ticket_for_existing_customer(db, client, api_key, customer):
    _, raw = api_key

    response = await client.post(
        "/api/v1/tickets",
        json={"email": "alice@example.com", "subject": "Hello", "description": "Again"},
        headers=_bearer(raw),
    )

    assert response.status_code == 201
    ticket = db.query(Ticket).one()
    assert ticket.requester_id == customer.id
    assert db.query(User).filter(User.email == "alice@example.com").count() == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("header", [None, "Bearer nope", "Basic abc"])
async def test_invalid_api_key_is_rejected(client, header):
    headers = {"Authorization": header} if header else {}
    response = await client.post(
        "/api/v1/tickets",
        json={"email": "a@example.com", "subject": "s", "description": "d"},
        headers=headers,
    )
    assert response.status_code == 401
    assert response.json()["detail"]["reason"] == "invalid_api_key"


@pytest.mark.asyncio
async def test_revoked_key_is_rejected(db, client, api_key):
    key, raw = api_key
    api_key_service.revoke_api_key(db, key.id)

    response = await client.get("/api/v1/tickets/1", headers=_bearer(raw))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_form_restricted_key(db, client):
    allowed = Form(name="Billing", is_active=True)
    other = Form(name="Hardware", is_active=True)
    db.add_all([allowed, other])
    db.commit()
    _, raw = api_key_service.create_api_key(db, name="Billing bot", form_id=allowed.id)

    denied = await client.post(
        "/api/v1/tickets",
        json={"email": "a@example.com", "subject": "s", "description": "d", "form_id": str(other.id)},
        headers=_bearer(raw),
    )
    assert denied.status_code == 403
    assert denied.json()["detail"]["reason"] == "form_not_allowed"

    created = await client.post(
        "/api/v1/tickets",
        json={"email": "a@example.com", "subject": "s", "description": "d"},
        headers=_bearer(raw),
    )
    assert created.status_code == 201
    assert created.json()["form_id"] == str(allowed.id)


@pytest.mark.asyncio
async def test_get_ticket_by_number(client, api_key, make_ticket):
    _, raw = api_key
    ticket = make_ticket(subject="Lost password")

    response = await client.get(f"/api/v1/tickets/{ticket.ticket_number}", headers=_bearer(raw))

    assert response.status_code == 200
    assert response.json()["subject"] == "Lost password"
    assert response.json()["id"] == str(ticket.id)

    missing = await client.get("/api/v1/tickets/999", headers=_bearer(raw))
    assert missing.status_code == 404
    assert missing.json()["detail"]["reason"] == "ticket_not_found"


@pytest.mark.asyncio
async def test_get_ticket_outside_key_form_is_forbidden(db, client, make_ticket):
    form = Form(name="Billing", is_active=True)
    db.add(form)
    db.commit()
    _, raw = api_key_service.create_api_key(db, name="Billing bot", form_id=form.id)
    ticket = make_ticket()

    response = await client.get(f"/api/v1/tickets/{ticket.ticket_number}", headers=_bearer(raw))

    assert response.status_code == 403
