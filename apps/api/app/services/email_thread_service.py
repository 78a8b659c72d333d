"""Reply-token registry: one EmailThread per ticket, looked up by token."""

from __future__ import annotations

import re
import secrets
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.models import EmailThread

REPLY_TOKEN_BYTES = 32
_REPLY_ADDRESS_RE = re.compile(r"reply\+([a-f0-9]{64})@", re.IGNORECASE)


def generate_reply_token() -> str:
    """64 hex characters from a CSPRNG."""
    return secrets.token_hex(REPLY_TOKEN_BYTES)


def reply_address(token: str, inbound_domain: str) -> str:
    return f"reply+{token}@{inbound_domain}"


def extract_reply_token(recipients: str | None) -> str | None:
    """Find ``reply+{token}@`` anywhere in a To header (may list several addresses)."""
    if not recipients:
        return None
    match = _REPLY_ADDRESS_RE.search(recipients)
    return match.group(1).lower() if match else None


def get_thread_for_ticket(db: Session, ticket_id: UUID) -> EmailThread | None:
    return db.query(EmailThread).filter(EmailThread.ticket_id == ticket_id).first()


def find_thread_by_token(db: Session, token: str) -> EmailThread | None:
    return db.query(EmailThread).filter(EmailThread.reply_token == token.lower()).first()


def create_thread(db: Session, ticket_id: UUID) -> EmailThread:
    """Add a thread with a fresh token. Flushes only."""
    thread = EmailThread(ticket_id=ticket_id, reply_token=generate_reply_token())
    db.add(thread)
    db.flush()
    return thread


def get_or_create_thread(db: Session, ticket_id: UUID) -> EmailThread:
    """
    Lazily issue the ticket's reply token and commit it.

    Tokens are never rotated; a concurrent creator losing the unique race
    re-reads the winner's row.
    """
    thread = get_thread_for_ticket(db, ticket_id)
    if thread:
        return thread
    try:
        thread = create_thread(db, ticket_id)
        db.commit()
    except IntegrityError:
        db.rollback()
        thread = get_thread_for_ticket(db, ticket_id)
        if thread is None:
            raise
    return thread


def record_message_id(db: Session, thread: EmailThread, message_id: str | None) -> None:
    """Remember the latest Message-ID for In-Reply-To/References (last writer wins)."""
    if not message_id:
        return
    thread.message_id = message_id
    db.commit()
