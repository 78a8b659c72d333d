"""Tests for the admin settings endpoints."""

import pytest

from app.db.enums import TicketPriority
from app.schemas.settings import SettingsPatch
from app.services import settings_service


@pytest.mark.asyncio
async def test_admin_reads_masked_settings(db, client_for, admin):
    settings_service.update_app_settings(db, SettingsPatch(sendgrid_api_key="SG.abcdefghijkl"))

    async with client_for(admin) as c:
        response = await c.get("/settings")

    assert response.status_code == 200
    data = response.json()
    assert data["sendgrid_api_key_masked"] == "SG.a...ijkl"
    assert "sendgrid_api_key" not in data
    assert data["auto_close_hours"] == 48
    assert data["default_ticket_priority"] == "NORMAL"


@pytest.mark.asyncio
async def test_agents_cannot_manage_settings(client_for, agent):
    async with client_for(agent) as c:
        read = await c.get("/settings")
        write = await c.patch("/settings", json={"auto_close_enabled": True})

    assert read.status_code == 403
    assert write.status_code == 403


@pytest.mark.asyncio
async def test_patch_updates_only_sent_fields(db, client_for, admin):
    async with client_for(admin) as c:
        response = await c.patch("/settings", json={"auto_solve_enabled": True, "auto_solve_hours": 24})

    assert response.status_code == 200
    snapshot = settings_service.get_settings_snapshot(db)
    assert snapshot.auto_solve_enabled is True
    assert snapshot.auto_solve_hours == 24
    assert snapshot.auto_close_hours == 48


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"not_a_setting": True},
        {"auto_close_hours": 0},
        {"auto_solve_hours": -5},
        {"ai_knowledge_urls": ["not a url"]},
    ],
)
async def test_patch_rejects_invalid_payloads(client_for, admin, payload):
    async with client_for(admin) as c:
        response = await c.patch("/settings", json=payload)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_patch_rejects_unknown_priority(client_for, admin):
    async with client_for(admin) as c:
        response = await c.patch("/settings", json={"default_ticket_priority": "CRITICAL"})

    assert response.status_code == 422
    assert response.json()["detail"]["reason"] == "invalid_priority"


@pytest.mark.asyncio
async def test_default_priority_applies_to_new_tickets(db, client_for, admin, make_ticket):
    async with client_for(admin) as c:
        await c.patch("/settings", json={"default_ticket_priority": "HIGH"})

    ticket = make_ticket()
    assert ticket.priority == TicketPriority.HIGH


@pytest.mark.asyncio
async def test_clearing_sendgrid_key(db, client_for, admin):
    settings_service.update_app_settings(db, SettingsPatch(sendgrid_api_key="SG.abcdefghijkl"))

    async with client_for(admin) as c:
        response = await c.patch("/settings", json={"sendgrid_api_key": None})

    assert response.json()["sendgrid_api_key_masked"] is None


def test_short_keys_are_fully_masked(db):
    row = settings_service.update_app_settings(db, SettingsPatch(sendgrid_api_key="short"))
    assert settings_service.to_read(row).sendgrid_api_key_masked == "****"


def test_database_config_requires_enabled_flag(db, monkeypatch):
    monkeypatch.setattr(settings_service.env_settings, "SENDGRID_API_KEY", "SG.env")
    settings_service.update_app_settings(
        db, SettingsPatch(sendgrid_api_key="SG.db", sendgrid_from_email="db@example.com")
    )

    config = settings_service.effective_email_config(settings_service.get_settings_snapshot(db))
    assert config.api_key == "SG.env"

    settings_service.update_app_settings(db, SettingsPatch(sendgrid_enabled=True))
    config = settings_service.effective_email_config(settings_service.get_settings_snapshot(db))
    assert config.api_key == "SG.db"
    assert config.from_email == "db@example.com"
    assert config.from_domain == "example.com"
