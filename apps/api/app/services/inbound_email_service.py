"""Inbound email replies (SendGrid Inbound Parse).

A reply becomes a comment on the ticket it answers, or a follow-up ticket when
that ticket is CLOSED. The reply token in the To address identifies the
ticket; the From address must match the requester's mailbox. Every outcome is
reported as an ``InboundEmailResult`` and never raised, so the webhook can
always acknowledge with 200.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.structured_logging import build_log_context
from app.db.enums import Channel, TicketStatus
from app.db.models import EmailThread, Ticket
from app.jobs.utils import mask_email
from app.services import email_thread_service, settings_service, ticket_service
from app.services.ticket_lifecycle_service import LifecycleEffects, add_system_comment, apply_reply
from app.utils.normalization import mailbox_identity

logger = logging.getLogger(__name__)

MIN_REPLY_LENGTH = 2

_QUOTE_PATTERNS = (
    # Gmail: "On Mon, Jan 1, 2024 at 12:00 PM John Doe <john@example.com> wrote:"
    re.compile(r"On\s+.{10,100}\s+wrote:\s*$", re.IGNORECASE | re.MULTILINE),
    # Outlook
    re.compile(r"^-+\s*Original Message\s*-+$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^From:.*\r?\nSent:.*\r?\nTo:.*\r?\nSubject:", re.IGNORECASE | re.MULTILINE),
    # Apple Mail
    re.compile(r"^On\s.+,\s.+wrote:$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^>+\s*", re.MULTILINE),
    re.compile(r"^_{10,}$", re.MULTILINE),
    re.compile(r"^-{10,}$", re.MULTILINE),
)

_SIGNATURE_PATTERNS = (
    re.compile(r"^--\s*$", re.MULTILINE),
    re.compile(r"^Sent from my iPhone", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^Sent from my Android", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^Get Outlook for", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^Sent from Mail for Windows", re.IGNORECASE | re.MULTILINE),
)

_ANGLE_ADDRESS_RE = re.compile(r"<([^>]+)>")
_MESSAGE_ID_RE = re.compile(r"Message-ID:\s*(<[^>]+>)", re.IGNORECASE)
_EXCESS_BLANK_LINES_RE = re.compile(r"\n{3,}")


@dataclass
class InboundEmailResult:
    status: str
    reason: str | None = None
    action: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": self.status}
        if self.reason:
            body["reason"] = self.reason
        if self.action:
            body["action"] = self.action
        body.update(self.data)
        return body


# =============================================================================
# Parsing helpers
# =============================================================================

def parse_sender(from_header: str | None) -> str:
    """Address from ``Name <addr>`` or a bare ``addr``."""
    if not from_header:
        return ""
    match = _ANGLE_ADDRESS_RE.search(from_header)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return from_header.strip()


def parse_message_id(headers: str | None) -> str | None:
    if not headers:
        return None
    match = _MESSAGE_ID_RE.search(headers)
    return match.group(1) if match else None


def extract_reply_content(body: str | None) -> str:
    """
    Strip quoted history and signatures from a reply body.

    The body is cut at the earliest quote header, quoted line, separator or
    signature marker; stray ``>`` lines are dropped and runs of blank lines
    collapsed.
    """
    content = body or ""
    cutoff = len(content)
    for pattern in (*_QUOTE_PATTERNS, *_SIGNATURE_PATTERNS):
        match = pattern.search(content)
        if match and match.start() < cutoff:
            cutoff = match.start()

    content = content[:cutoff]
    content = "\n".join(line for line in content.split("\n") if not line.strip().startswith(">"))
    content = content.strip()
    return _EXCESS_BLANK_LINES_RE.sub("\n\n", content)


def text_to_html(text: str) -> str:
    """Minimal HTML for a plain-text reply (escaped, line breaks kept)."""
    escaped = html.escape(text)
    return escaped.replace("\n", "<br>\n").replace("  ", "&nbsp;&nbsp;")


# =============================================================================
# Processing
# =============================================================================

def process_inbound_email(
    db: Session,
    *,
    sender: str | None,
    recipients: str | None,
    subject: str | None = None,
    text: str | None = None,
    html_body: str | None = None,
    headers: str | None = None,
) -> InboundEmailResult:
    """Turn one inbound webhook payload into a comment or a follow-up ticket."""
    logger.info(
        "Inbound email received (subject=%r, has_text=%s, has_html=%s)",
        (subject or "")[:50],
        bool(text),
        bool(html_body),
    )
    try:
        return _process(db, sender=sender, recipients=recipients, text=text, headers=headers)
    except Exception:
        db.rollback()
        logger.exception(
            "Inbound email processing failed",
            extra=build_log_context(outcome="error"),
        )
        return InboundEmailResult(status="error", reason="internal_error")


def _process(
    db: Session,
    *,
    sender: str | None,
    recipients: str | None,
    text: str | None,
    headers: str | None,
) -> InboundEmailResult:
    token = email_thread_service.extract_reply_token(recipients)
    if not token:
        logger.info("Inbound email ignored: no reply token in recipients")
        return InboundEmailResult(status="ignored", reason="no_reply_token")

    thread = email_thread_service.find_thread_by_token(db, token)
    if thread is None:
        logger.info("Inbound email ignored: unknown reply token %s...", token[:8])
        return InboundEmailResult(status="ignored", reason="no_reply_token")
    if thread.ticket is None:
        logger.info("Inbound email ignored: no ticket for reply token %s...", token[:8])
        return InboundEmailResult(status="ignored", reason="ticket_not_found")

    ticket = thread.ticket
    requester = ticket.requester
    sender_email = parse_sender(sender)
    if mailbox_identity(sender_email) != mailbox_identity(requester.email):
        logger.warning(
            "Inbound email rejected for ticket #%s: sender %s does not match requester",
            ticket.ticket_number,
            mask_email(sender_email),
            extra=build_log_context(ticket_id=str(ticket.id), outcome="rejected"),
        )
        return InboundEmailResult(status="rejected", reason="sender_mismatch")

    if requester.is_blocked:
        logger.warning("Inbound email rejected for ticket #%s: requester is blocked", ticket.ticket_number)
        return InboundEmailResult(status="rejected", reason="user_blocked")

    content = extract_reply_content(text)
    if len(content) < MIN_REPLY_LENGTH:
        logger.info("Inbound email ignored for ticket #%s: empty reply", ticket.ticket_number)
        return InboundEmailResult(status="ignored", reason="empty_content")

    content_html = text_to_html(content)
    message_id = parse_message_id(headers)

    if ticket.status == TicketStatus.CLOSED:
        return _create_follow_up(
            db,
            ticket,
            content=content,
            content_html=content_html,
            message_id=message_id,
            sender_email=sender_email,
        )
    return _add_reply(
        db,
        ticket,
        thread,
        content=content,
        content_html=content_html,
        message_id=message_id,
        sender_email=sender_email,
    )


def _create_follow_up(
    db: Session,
    original: Ticket,
    *,
    content: str,
    content_html: str,
    message_id: str | None,
    sender_email: str,
) -> InboundEmailResult:
    """A reply to a CLOSED ticket opens a new ticket; the original is left as it is."""
    snapshot = settings_service.get_settings_snapshot(db)
    requester = original.requester
    created = ticket_service.build_ticket(
        db,
        requester=requester,
        subject=f"Follow-up: {original.subject}",
        description=content,
        description_html=content_html,
        channel=Channel.EMAIL,
        snapshot=snapshot,
        form_id=original.form_id if original.form and original.form.is_active else None,
        related_ticket_id=original.id,
        email_message_id=message_id,
        email_from=sender_email,
        actor_id=requester.id,
        activity_details={
            "source": "email_reply_to_closed",
            "related_ticket_id": str(original.id),
            "related_ticket_number": original.ticket_number,
        },
    )
    follow_up = created.ticket
    note = f"Customer replied via email. A new follow-up ticket #{follow_up.ticket_number} has been created."
    add_system_comment(
        db,
        original,
        author_id=requester.id,
        body=(
            "<p><em>Customer replied via email. A new follow-up ticket "
            f'<a href="/tickets/{follow_up.id}">#{follow_up.ticket_number}</a> has been created.</em></p>'
        ),
        body_plain=note,
    )
    db.commit()

    logger.info(
        "Created follow-up ticket #%s from closed ticket #%s",
        follow_up.ticket_number,
        original.ticket_number,
        extra=build_log_context(ticket_id=str(follow_up.id), outcome="follow_up_created"),
    )
    _finalize_after_commit(db, created.effects, ticket_id=follow_up.id, actor_id=requester.id)
    return InboundEmailResult(
        status="success",
        action="follow_up_created",
        data={
            "original_ticket_number": original.ticket_number,
            "new_ticket_number": follow_up.ticket_number,
            "new_ticket_id": str(follow_up.id),
        },
    )


def _add_reply(
    db: Session,
    ticket: Ticket,
    thread: EmailThread,
    *,
    content: str,
    content_html: str,
    message_id: str | None,
    sender_email: str,
) -> InboundEmailResult:
    outcome = apply_reply(
        db,
        ticket,
        ticket.requester,
        body=content_html,
        body_plain=content,
        is_internal=False,
        channel=Channel.EMAIL,
        email_message_id=message_id,
        email_from=sender_email,
        activity_details={"source": "email_reply"},
    )
    if message_id:
        thread.message_id = message_id
    db.commit()

    logger.info(
        "Added email reply to ticket #%s (status=%s)",
        ticket.ticket_number,
        outcome.new_status.value if outcome.new_status else "unchanged",
        extra=build_log_context(ticket_id=str(ticket.id), outcome="comment_added"),
    )
    _finalize_after_commit(db, outcome.effects, ticket_id=ticket.id, actor_id=ticket.requester_id)
    return InboundEmailResult(
        status="success",
        action="comment_added",
        data={"ticket_number": ticket.ticket_number, "comment_id": str(outcome.comment.id)},
    )


def _finalize_after_commit(
    db: Session,
    effects: LifecycleEffects,
    *,
    ticket_id: UUID,
    actor_id: UUID,
) -> None:
    """Run effects for a reply that is already committed; failures are only logged."""
    try:
        ticket_service.finalize_effects(db, effects, actor_id=actor_id)
    except Exception:
        db.rollback()
        logger.exception(
            "Post-commit effects failed for inbound email",
            extra=build_log_context(ticket_id=str(ticket_id), outcome="effects_failed"),
        )
