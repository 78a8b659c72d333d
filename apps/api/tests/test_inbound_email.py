"""Tests for inbound email replies (SendGrid Inbound Parse)."""

import uuid

import pytest

from app.db.enums import Channel, TicketStatus
from app.db.models import Comment, Form, Ticket
from app.schemas.settings import SettingsPatch
from app.services import (
    email_thread_service,
    inbound_email_service,
    merge_service,
    settings_service,
    ticket_service,
)
from app.services.ticket_lifecycle_service import TicketUpdateCommand

INBOUND_DOMAIN = "reply.example.com"


def _reply_to(db, ticket) -> str:
    thread = email_thread_service.get_thread_for_ticket(db, ticket.id)
    return email_thread_service.reply_address(thread.reply_token, INBOUND_DOMAIN)


def _process(db, ticket=None, *, sender="Alice <alice@example.com>", to=None, text="Thanks, that worked!", headers=None):
    return inbound_email_service.process_inbound_email(
        db,
        sender=sender,
        recipients=to if to is not None else _reply_to(db, ticket),
        subject="Re: [Ticket #1] Printer is on fire",
        text=text,
        headers=headers,
    )


def _set_status(db, ticket, actor, status):
    ticket_service.patch_ticket(
        db, ticket_id=ticket.id, command=TicketUpdateCommand(status=status), actor_id=actor.id
    )


# =============================================================================
# Parsing helpers
# =============================================================================


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ("Alice <Alice@Example.com>", "Alice@Example.com"),
        ('"Doe, John" <john@example.com>', "john@example.com"),
        ("  bob@example.com ", "bob@example.com"),
        (None, ""),
    ],
)
def test_parse_sender(header, expected):
    assert inbound_email_service.parse_sender(header) == expected


def test_parse_message_id():
    headers = "Received: by mx\nMessage-ID: <CAF123@mail.gmail.com>\nSubject: Re: hi"
    assert inbound_email_service.parse_message_id(headers) == "<CAF123@mail.gmail.com>"
    assert inbound_email_service.parse_message_id("Subject: hi") is None


def test_extract_reply_strips_gmail_quote():
    body = (
        "Thanks, that fixed it!\n\n"
        "On Mon, Jan 1, 2024 at 12:00 PM Support <support@example.com> wrote:\n"
        "> Please restart the printer\n"
    )
    assert inbound_email_service.extract_reply_content(body) == "Thanks, that fixed it!"


def test_extract_reply_strips_outlook_header():
    body = (
        "Works now\n\n"
        "From: Support <support@example.com>\n"
        "Sent: Monday, January 1, 2024 12:00 PM\n"
        "To: Alice\n"
        "Subject: RE: Ticket\n\n"
        "Old text"
    )
    assert inbound_email_service.extract_reply_content(body) == "Works now"


@pytest.mark.parametrize(
    "signature",
    ["--\nAlice", "Sent from my iPhone", "Get Outlook for iOS", "-----Original Message-----\nold"],
)
def test_extract_reply_strips_signatures(signature):
    assert inbound_email_service.extract_reply_content(f"All good\n\n{signature}") == "All good"


def test_extract_reply_collapses_blank_lines():
    assert inbound_email_service.extract_reply_content("one\n\n\n\n\ntwo") == "one\n\ntwo"


def test_text_to_html_escapes_and_keeps_line_breaks():
    assert inbound_email_service.text_to_html("a < b\nnext") == "a &lt; b<br>\nnext"


def test_extract_reply_token():
    token = "ab" * 32
    recipients = f"Support <support@example.com>, reply+{token.upper()}@reply.example.com"
    assert email_thread_service.extract_reply_token(recipients) == token
    assert email_thread_service.extract_reply_token("support@example.com") is None
    assert email_thread_service.extract_reply_token("reply+short@reply.example.com") is None


# =============================================================================
# Processing
# =============================================================================


def test_reply_becomes_comment_and_reopens_pending_ticket(db, make_ticket, agent, session_for):
    ticket = make_ticket()
    ticket_service.add_comment(
        db,
        ticket_id=ticket.id,
        session=session_for(agent),
        snapshot=settings_service.get_settings_snapshot(db),
        body="Did a restart help?",
    )
    assert ticket.status == TicketStatus.PENDING

    result = _process(
        db,
        ticket,
        text="Yes, all fixed.\n\nOn Tue, Jan 2, 2024 at 9:00 AM Support <s@example.com> wrote:\n> Did a restart help?",
        headers="Message-ID: <reply-1@mail.example.com>",
    )

    assert result.status == "success"
    assert result.action == "comment_added"
    assert result.data["ticket_number"] == ticket.ticket_number

    db.refresh(ticket)
    assert ticket.status == TicketStatus.OPEN
    comment = db.get(Comment, uuid.UUID(result.data["comment_id"]))
    assert comment.body_plain == "Yes, all fixed."
    assert comment.channel == Channel.EMAIL
    assert comment.email_message_id == "<reply-1@mail.example.com>"
    assert comment.email_from == "alice@example.com"
    assert comment.author_id == ticket.requester_id

    thread = email_thread_service.get_thread_for_ticket(db, ticket.id)
    assert thread.message_id == "<reply-1@mail.example.com>"


def test_reply_to_solved_ticket_reopens_it(db, make_ticket, agent):
    ticket = make_ticket()
    _set_status(db, ticket, agent, "SOLVED")

    result = _process(db, ticket, text="Not fixed after all")

    assert result.action == "comment_added"
    db.refresh(ticket)
    assert ticket.status == TicketStatus.OPEN
    assert ticket.solved_at is None


def test_reply_to_closed_ticket_creates_follow_up(db, make_ticket, agent):
    original = make_ticket(subject="Broken laptop")
    _set_status(db, original, agent, "CLOSED")

    result = _process(db, original, text="It broke again")

    assert result.status == "success"
    assert result.action == "follow_up_created"
    follow_up = db.query(Ticket).filter(Ticket.ticket_number == result.data["new_ticket_number"]).one()
    assert follow_up.subject == "Follow-up: Broken laptop"
    assert follow_up.related_ticket_id == original.id
    assert follow_up.channel == Channel.EMAIL
    assert follow_up.status == TicketStatus.NEW
    assert follow_up.description == "It broke again"

    db.refresh(original)
    assert original.status == TicketStatus.CLOSED
    note = (
        db.query(Comment)
        .filter(Comment.ticket_id == original.id, Comment.is_system.is_(True))
        .one()
    )
    assert f"#{follow_up.ticket_number}" in note.body_plain

    # The follow-up gets its own reply thread
    assert email_thread_service.get_thread_for_ticket(db, follow_up.id) is not None


def test_follow_up_drops_inactive_form(db, make_ticket, agent):
    form = Form(name="Hardware", is_active=True)
    db.add(form)
    db.commit()
    original = make_ticket(form_id=form.id)
    _set_status(db, original, agent, "CLOSED")
    form.is_active = False
    db.commit()

    result = _process(db, original, text="Again please")

    follow_up = db.query(Ticket).filter(Ticket.ticket_number == result.data["new_ticket_number"]).one()
    assert follow_up.form_id is None


def test_closed_ticket_follow_up_ignores_reopen_setting(db, make_ticket, agent):
    settings_service.update_app_settings(db, SettingsPatch(allow_customer_reopen_closed=True))
    ticket = make_ticket()
    _set_status(db, ticket, agent, "CLOSED")

    result = _process(db, ticket, text="Please reopen")

    # Email replies to CLOSED tickets always open a follow-up
    assert result.action == "follow_up_created"


def test_plus_addressed_sender_matches_requester(db, make_ticket):
    ticket = make_ticket()
    result = _process(db, ticket, sender="ALICE+support@Example.com")
    assert result.status == "success"


def test_sender_mismatch_is_rejected(db, make_ticket):
    ticket = make_ticket()
    result = _process(db, ticket, sender="Mallory <mallory@example.com>")
    assert (result.status, result.reason) == ("rejected", "sender_mismatch")
    assert db.query(Comment).filter(Comment.ticket_id == ticket.id).count() == 1


def test_blocked_requester_is_rejected(db, make_ticket, customer):
    ticket = make_ticket()
    customer.is_blocked = True
    db.commit()

    result = _process(db, ticket)
    assert (result.status, result.reason) == ("rejected", "user_blocked")


def test_missing_token_is_ignored(db):
    result = _process(db, to="support@example.com")
    assert (result.status, result.reason) == ("ignored", "no_reply_token")


def test_unknown_token_is_ignored(db, make_ticket):
    make_ticket()
    comments_before = db.query(Comment).count()

    result = _process(db, to=f"reply+{'ab' * 32}@{INBOUND_DOMAIN}")

    assert (result.status, result.reason) == ("ignored", "no_reply_token")
    assert db.query(Comment).count() == comments_before
    assert db.query(Ticket).count() == 1


@pytest.mark.parametrize("closed", [False, True])
def test_stored_reply_succeeds_when_post_commit_effects_fail(db, make_ticket, agent, monkeypatch, closed):
    ticket = make_ticket()
    if closed:
        _set_status(db, ticket, agent, "CLOSED")

    def explode(*args, **kwargs):
        raise RuntimeError("queue unavailable")

    monkeypatch.setattr(ticket_service, "finalize_effects", explode)

    result = _process(db, ticket)

    assert result.status == "success"
    assert result.action == ("follow_up_created" if closed else "comment_added")
    if closed:
        assert db.query(Ticket).count() == 2
    else:
        assert db.query(Comment).filter(Comment.ticket_id == ticket.id).count() == 2


def test_quoted_only_reply_is_ignored(db, make_ticket):
    ticket = make_ticket()
    result = _process(db, ticket, text="> just the quote\n> nothing else")
    assert (result.status, result.reason) == ("ignored", "empty_content")


def test_reply_to_merged_ticket_opens_follow_up(db, make_ticket, agent, session_for):
    target = make_ticket()
    source = make_ticket()
    merge_service.merge_tickets(db, target_id=target.id, source_ids=[source.id], session=session_for(agent))

    # Merged tickets are CLOSED, so the reply starts a follow-up instead
    result = _process(db, source, text="Hello?")
    assert result.action == "follow_up_created"


# =============================================================================
# Webhook
# =============================================================================


@pytest.mark.asyncio
async def test_webhook_adds_comment(db, client, make_ticket):
    ticket = make_ticket()

    response = await client.post(
        "/webhooks/sendgrid/inbound",
        data={
            "from": "Alice Customer <alice@example.com>",
            "to": _reply_to(db, ticket),
            "subject": "Re: ticket",
            "text": "More details: it beeps",
            "headers": "Message-ID: <abc@mail.example.com>",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["action"] == "comment_added"
    assert body["ticket_number"] == ticket.ticket_number
    assert "reason" not in body


@pytest.mark.asyncio
async def test_webhook_always_acknowledges(client, db):
    response = await client.post("/webhooks/sendgrid/inbound", data={"to": "nobody@example.com"})
    assert response.status_code == 200
    assert response.json() == {"status": "ignored", "reason": "no_reply_token"}
