"""Email-related job handlers."""

from __future__ import annotations

import logging

from app.core.structured_logging import build_log_context
from app.db.enums import TicketEmailEvent
from app.jobs.utils import uuid_from_payload
from app.services import email_service

logger = logging.getLogger(__name__)


async def process_send_ticket_email(db, job) -> None:
    """
    Deliver one lifecycle email (created, agent reply, resolved, feedback).

    Skips (disabled toggle, inactive template, missing config) complete the
    job; delivery errors propagate so the worker retries.
    """
    payload = job.payload or {}
    ticket_id = uuid_from_payload(payload, "ticket_id")
    event_value = payload.get("event")
    if not event_value:
        raise ValueError("Missing event in job payload")

    result = await email_service.send_ticket_email(
        db,
        event=TicketEmailEvent(event_value),
        ticket_id=ticket_id,
        extra=payload.get("extra") or {},
    )
    logger.info(
        "Ticket email job %s: %s",
        job.id,
        result,
        extra=build_log_context(
            ticket_id=str(ticket_id),
            job_id=str(job.id),
            job_type=job.job_type,
            outcome=result,
        ),
    )
