"""Tests for AI ticket summaries."""

import httpx
import pytest
from fastapi import HTTPException

from app.core.config import settings
from app.db.models import Comment
from app.services import ai_provider, ai_service, settings_service, ticket_service


def _anthropic_response(status_code=200, json=None):
    return httpx.Response(
        status_code,
        json=json,
        request=httpx.Request("POST", settings.ANTHROPIC_API_URL),
    )


@pytest.fixture
def ai_configured(monkeypatch):
    monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", "sk-ant-test")


@pytest.fixture
def conversation(db, make_ticket, agent, session_for):
    ticket = make_ticket(subject="VPN drops hourly")
    snapshot = settings_service.get_settings_snapshot(db)
    ticket_service.add_comment(
        db, ticket_id=ticket.id, session=session_for(agent), snapshot=snapshot,
        body="Check the router logs", is_internal=True,
    )
    ticket_service.add_comment(
        db, ticket_id=ticket.id, session=session_for(agent), snapshot=snapshot, body="Which client version?"
    )
    return ticket


def test_summary_prompt_includes_conversation(db, conversation):
    comments = (
        db.query(Comment)
        .filter(Comment.ticket_id == conversation.id)
        .order_by(Comment.created_at, Comment.id)
        .all()
    )

    prompt = ai_service.build_summary_prompt(conversation, comments, knowledge="VPN client 4.2 is current")

    assert "Ticket Subject: VPN drops hourly" in prompt
    assert "Requester: Alice Customer" in prompt
    assert "[Customer] Alice Customer: Smoke everywhere" in prompt
    assert "[Agent (Internal Note)] Agent Smith: Check the router logs" in prompt
    assert "[Agent] Agent Smith: Which client version?" in prompt
    assert "Product knowledge (for context):\nVPN client 4.2 is current" in prompt


@pytest.mark.asyncio
async def test_summary_requires_api_key(db, conversation, monkeypatch):
    monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", "")

    with pytest.raises(HTTPException) as exc:
        await ai_service.generate_ticket_summary(db, conversation)

    assert exc.value.status_code == 400
    assert exc.value.detail["reason"] == "ai_not_configured"


@pytest.mark.asyncio
async def test_summary_success(db, conversation, ai_configured, monkeypatch):
    captured = {}

    async def fake_request(request_fn, **kwargs):
        captured["retry_statuses"] = kwargs.get("retry_statuses")
        return _anthropic_response(
            json={
                "model": "claude-test",
                "content": [{"type": "text", "text": "  VPN disconnects every hour.  "}],
                "usage": {"input_tokens": 120, "output_tokens": 12},
            }
        )

    monkeypatch.setattr(ai_provider, "request_with_retries", fake_request)

    summary = await ai_service.generate_ticket_summary(db, conversation)

    assert summary == "VPN disconnects every hour."
    assert 529 in captured["retry_statuses"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        _anthropic_response(500, json={"error": "overloaded"}),
        _anthropic_response(200, json={"content": [{"type": "tool_use"}]}),
    ],
)
async def test_summary_provider_failure(db, conversation, ai_configured, monkeypatch, response):
    async def fake_request(request_fn, **kwargs):
        return response

    monkeypatch.setattr(ai_provider, "request_with_retries", fake_request)

    with pytest.raises(HTTPException) as exc:
        await ai_service.generate_ticket_summary(db, conversation)

    assert exc.value.status_code == 502
    assert exc.value.detail["reason"] == "ai_failed"


@pytest.mark.asyncio
async def test_anthropic_provider_lifts_system_prompt(monkeypatch):
    sent = {}

    class FakeClient:
        def __init__(self, *args, **kwargs):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

        async def post(self, url, headers=None, json=None):
            sent.update(url=url, headers=headers, json=json)
            return _anthropic_response(json={"content": [{"type": "text", "text": "hi"}], "usage": {}})

    monkeypatch.setattr(ai_provider.httpx, "AsyncClient", FakeClient)
    provider = ai_provider.AnthropicProvider("sk-ant-test", default_model="claude-test")

    response = await provider.chat(
        [
            ai_provider.ChatMessage(role="system", content="Be brief"),
            ai_provider.ChatMessage(role="user", content="Hello"),
        ],
        max_tokens=64,
    )

    assert response.content == "hi"
    assert response.total_tokens == 0
    assert sent["headers"]["x-api-key"] == "sk-ant-test"
    assert sent["json"] == {
        "model": "claude-test",
        "max_tokens": 64,
        "messages": [{"role": "user", "content": "Hello"}],
        "system": "Be brief",
    }


@pytest.mark.asyncio
async def test_summary_endpoint(client_for, agent, customer, conversation, monkeypatch):
    async def fake_summary(db, ticket):
        return f"Summary of #{ticket.ticket_number}"

    monkeypatch.setattr(ai_service, "generate_ticket_summary", fake_summary)

    async with client_for(agent) as c:
        response = await c.post(f"/tickets/{conversation.id}/summary")
    async with client_for(customer) as c:
        forbidden = await c.post(f"/tickets/{conversation.id}/summary")

    assert response.status_code == 200
    assert response.json() == {
        "ticket_id": str(conversation.id),
        "summary": f"Summary of #{conversation.ticket_number}",
    }
    assert forbidden.status_code == 403
