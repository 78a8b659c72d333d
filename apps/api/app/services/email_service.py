"""Email service - lifecycle email queueing, template rendering and delivery.

Lifecycle code never sends mail inline. It returns ``OutboundEmail`` requests;
``queue_ticket_emails`` turns them into ``send_ticket_email`` jobs after the
ticket transaction commits, and the worker calls ``send_ticket_email``.
"""

from __future__ import annotations

import html
import logging
import re
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.structured_logging import build_log_context
from app.db.enums import EVENT_TEMPLATES, EmailTemplateType, JobType, TicketEmailEvent
from app.db.models import EmailTemplate, Job, Ticket
from app.jobs.utils import mask_email
from app.services import (
    email_thread_service,
    feedback_service,
    job_service,
    sendgrid_service,
    settings_service,
)
from app.services.ticket_lifecycle_service import OutboundEmail
from app.utils.datetimes import epoch_millis, utc_now

logger = logging.getLogger(__name__)

# Variable pattern for template substitution: {{variable_name}}
VARIABLE_PATTERN = re.compile(r"\{\{(\w+)\}\}")

DEFAULT_USER_NAME = "Customer"
DEFAULT_AGENT_NAME = "Support Agent"

REPLY_INSTRUCTIONS = {
    TicketEmailEvent.TICKET_CREATED: "You can reply directly to this email to add more information to your ticket.",
    TicketEmailEvent.AGENT_REPLY: "You can reply directly to this email to respond to the ticket.",
    TicketEmailEvent.TICKET_RESOLVED: "If you need further assistance, you can reply to this email to reopen the ticket.",
    TicketEmailEvent.FEEDBACK_REQUEST: "",
}


# =============================================================================
# Queueing
# =============================================================================

def queue_ticket_email(db: Session, email: OutboundEmail) -> Job | None:
    """
    Schedule one lifecycle email.

    Duplicates (same idempotency key) and queue failures are logged, never raised.
    """
    log_context = build_log_context(
        ticket_id=str(email.ticket_id),
        job_type=JobType.SEND_TICKET_EMAIL.value,
        reason=email.event.value,
    )
    try:
        return job_service.schedule_job(
            db,
            JobType.SEND_TICKET_EMAIL,
            payload={
                "event": email.event.value,
                "ticket_id": str(email.ticket_id),
                "extra": email.extra,
            },
            idempotency_key=email.idempotency_key,
        )
    except IntegrityError:
        db.rollback()
        logger.info("Ticket email already queued", extra={**log_context, "outcome": "duplicate"})
    except Exception:
        db.rollback()
        logger.exception("Failed to queue ticket email", extra={**log_context, "outcome": "error"})
    return None


def queue_ticket_emails(db: Session, emails: list[OutboundEmail]) -> int:
    """Queue each request independently; returns how many jobs were created."""
    return sum(1 for email in emails if queue_ticket_email(db, email) is not None)


# =============================================================================
# Rendering
# =============================================================================

def render_placeholders(template: str, values: dict[str, str], *, escape: bool = True) -> str:
    """
    Replace ``{{name}}`` markers.

    Values are HTML-escaped unless the key names a URL (those land in href
    attributes) or ``escape`` is False (plain-text bodies). Unknown markers
    are left as-is.
    """

    def replace_var(match: re.Match) -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        value = values[key] or ""
        if not escape or "url" in key.lower():
            return value
        return html.escape(value, quote=True)

    return VARIABLE_PATTERN.sub(replace_var, template)


def wrap_in_layout(body_html: str, from_name: str | None = None) -> str:
    """Minimal responsive email shell around a rendered template body."""
    company = html.escape(from_name or "Support Team")
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        "<head>\n"
        '  <meta charset="utf-8">\n'
        '  <meta name="viewport" content="width=device-width, initial-scale=1.0">\n'
        f"  <title>{company}</title>\n"
        "</head>\n"
        '<body style="margin:0;padding:0;background-color:#f4f5f7;'
        "font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,Arial,sans-serif;\">\n"
        '  <table role="presentation" width="100%" cellpadding="0" cellspacing="0" '
        'style="background-color:#f4f5f7;">\n'
        '    <tr><td align="center" style="padding:24px 16px;">\n'
        '      <table role="presentation" width="100%" cellpadding="0" cellspacing="0" '
        'style="max-width:600px;background-color:#ffffff;border-radius:8px;">\n'
        '        <tr><td style="background-color:#2563eb;padding:24px 32px;text-align:center;">'
        f'<h1 style="margin:0;font-size:20px;color:#ffffff;">{company}</h1></td></tr>\n'
        f'        <tr><td style="padding:32px;">{body_html}</td></tr>\n'
        '        <tr><td style="background-color:#f9fafb;padding:20px 32px;'
        'border-top:1px solid #e5e7eb;text-align:center;font-size:12px;color:#9ca3af;">'
        f"This is an automated message from {company}.</td></tr>\n"
        "      </table>\n"
        "    </td></tr>\n"
        "  </table>\n"
        "</body>\n"
        "</html>"
    )


def generate_message_id(ticket_number: int, from_domain: str) -> str:
    return f"<ticket-{ticket_number}-{epoch_millis(utc_now())}@{from_domain}>"


def build_headers(
    ticket: Ticket,
    *,
    message_id: str,
    previous_message_id: str | None,
) -> dict[str, str]:
    headers = {
        "Message-ID": message_id,
        "X-Ticket-Number": str(ticket.ticket_number),
        "X-Ticket-ID": str(ticket.id),
    }
    if previous_message_id:
        headers["In-Reply-To"] = previous_message_id
        headers["References"] = previous_message_id
    return headers


def build_placeholders(
    ticket: Ticket,
    event: TicketEmailEvent,
    *,
    frontend_url: str,
    extra: dict | None = None,
) -> dict[str, str]:
    extra = extra or {}
    values = {
        "userName": ticket.requester.display_name or DEFAULT_USER_NAME,
        "ticketNumber": str(ticket.ticket_number),
        "ticketSubject": ticket.subject,
        "ticketUrl": f"{frontend_url}/tickets/{ticket.id}",
        "replyInstructions": REPLY_INSTRUCTIONS.get(event, ""),
    }
    if event == TicketEmailEvent.AGENT_REPLY:
        values["agentName"] = extra.get("agentName") or DEFAULT_AGENT_NAME
        values["replyContent"] = extra.get("replyContent") or ""
    return values


# =============================================================================
# Delivery (worker side)
# =============================================================================

def _event_enabled(event: TicketEmailEvent, snapshot: settings_service.SettingsSnapshot) -> bool:
    if event == TicketEmailEvent.TICKET_CREATED:
        return snapshot.send_ticket_created_email
    return snapshot.send_ticket_resolved_email


def get_active_template(db: Session, template_type: EmailTemplateType) -> EmailTemplate | None:
    template = db.query(EmailTemplate).filter(EmailTemplate.type == template_type).first()
    if template is None or not template.is_active:
        return None
    return template


async def send_ticket_email(
    db: Session,
    *,
    event: TicketEmailEvent,
    ticket_id: UUID,
    extra: dict | None = None,
) -> str:
    """
    Render and deliver one lifecycle email.

    Returns ``"sent"`` or ``"skipped:<reason>"``. Delivery failures raise
    ``SendGridError`` so the job is retried.
    """
    log_context = build_log_context(ticket_id=str(ticket_id), reason=event.value)

    ticket = db.get(Ticket, ticket_id)
    if ticket is None:
        logger.info("Ticket email skipped: ticket gone", extra=log_context)
        return "skipped:ticket_not_found"

    snapshot = settings_service.get_settings_snapshot(db)
    if not _event_enabled(event, snapshot):
        logger.info("Ticket email skipped: disabled in settings", extra=log_context)
        return "skipped:disabled"

    config = settings_service.effective_email_config(snapshot)
    if not config.is_configured:
        logger.info("Ticket email skipped: SendGrid not configured", extra=log_context)
        return "skipped:not_configured"

    template = get_active_template(db, EVENT_TEMPLATES[event])
    if template is None:
        logger.info(
            "Ticket email skipped: %s template missing or inactive",
            EVENT_TEMPLATES[event].value,
            extra=log_context,
        )
        return "skipped:template_inactive"

    requester = ticket.requester
    if requester is None or not requester.email:
        return "skipped:no_recipient"

    thread = email_thread_service.get_or_create_thread(db, ticket.id)
    placeholders = build_placeholders(ticket, event, frontend_url=config.frontend_url, extra=extra)
    if event == TicketEmailEvent.FEEDBACK_REQUEST:
        feedback = feedback_service.get_or_create_feedback(db, ticket)
        placeholders["feedbackUrl"] = feedback_service.feedback_url(config.frontend_url, feedback.token)

    message_id = generate_message_id(ticket.ticket_number, config.from_domain)
    message = sendgrid_service.OutboundMessage(
        to_email=requester.email,
        to_name=requester.display_name,
        from_email=config.from_email,
        from_name=config.from_name,
        reply_to=email_thread_service.reply_address(thread.reply_token, config.inbound_domain),
        reply_to_name=f"Ticket #{ticket.ticket_number}",
        subject=render_placeholders(template.subject, placeholders, escape=False),
        html=wrap_in_layout(render_placeholders(template.body_html, placeholders), config.from_name),
        text=render_placeholders(template.body_plain or "", placeholders, escape=False),
        headers=build_headers(ticket, message_id=message_id, previous_message_id=thread.message_id),
    )

    await sendgrid_service.send_mail(config.api_key, message)

    # Feedback mails stay outside the reply thread
    if event != TicketEmailEvent.FEEDBACK_REQUEST:
        email_thread_service.record_message_id(db, thread, message_id)

    logger.info(
        "Sent %s email for ticket #%s to %s",
        event.value,
        ticket.ticket_number,
        mask_email(requester.email),
        extra={**log_context, "outcome": "sent"},
    )
    return "sent"


# =============================================================================
# Default templates
# =============================================================================

DEFAULT_TEMPLATES: dict[EmailTemplateType, dict[str, str]] = {
    EmailTemplateType.TICKET_CREATED: {
        "subject": "[Ticket #{{ticketNumber}}] {{ticketSubject}}",
        "body_html": (
            "<p>Hello <strong>{{userName}}</strong>,</p>"
            "<p>We received your request and opened ticket <strong>#{{ticketNumber}}</strong>: "
            "{{ticketSubject}}.</p>"
            '<p><a href="{{ticketUrl}}">View your ticket</a></p>'
            "<p>{{replyInstructions}}</p>"
        ),
        "body_plain": (
            "Hello {{userName}},\n\n"
            "We received your request and opened ticket #{{ticketNumber}}: {{ticketSubject}}.\n\n"
            "View your ticket: {{ticketUrl}}\n\n"
            "{{replyInstructions}}"
        ),
    },
    EmailTemplateType.NEW_REPLY: {
        "subject": "Re: [Ticket #{{ticketNumber}}] {{ticketSubject}}",
        "body_html": (
            "<p>Hello <strong>{{userName}}</strong>,</p>"
            "<p>{{agentName}} replied to your ticket:</p>"
            '<blockquote style="border-left:3px solid #e5e7eb;padding-left:12px;">{{replyContent}}</blockquote>'
            '<p><a href="{{ticketUrl}}">View the conversation</a></p>'
            "<p>{{replyInstructions}}</p>"
        ),
        "body_plain": (
            "Hello {{userName}},\n\n"
            "{{agentName}} replied to your ticket:\n\n"
            "{{replyContent}}\n\n"
            "View the conversation: {{ticketUrl}}\n\n"
            "{{replyInstructions}}"
        ),
    },
    EmailTemplateType.TICKET_RESOLVED: {
        "subject": "[Ticket #{{ticketNumber}}] Resolved: {{ticketSubject}}",
        "body_html": (
            "<p>Hello <strong>{{userName}}</strong>,</p>"
            "<p>Your ticket <strong>#{{ticketNumber}}</strong> has been marked as resolved.</p>"
            '<p><a href="{{ticketUrl}}">View your ticket</a></p>'
            "<p>{{replyInstructions}}</p>"
        ),
        "body_plain": (
            "Hello {{userName}},\n\n"
            "Your ticket #{{ticketNumber}} has been marked as resolved.\n\n"
            "View your ticket: {{ticketUrl}}\n\n"
            "{{replyInstructions}}"
        ),
    },
    EmailTemplateType.FEEDBACK_REQUEST: {
        "subject": "How was your support experience? - Ticket #{{ticketNumber}}",
        "body_html": (
            "<p>Hello <strong>{{userName}}</strong>,</p>"
            "<p>Your support ticket <strong>#{{ticketNumber}}</strong> ({{ticketSubject}}) has been resolved.</p>"
            "<p>How satisfied were you with the support you received?</p>"
            '<p><a href="{{feedbackUrl}}&rating=VERY_SATISFIED">Very satisfied</a> | '
            '<a href="{{feedbackUrl}}&rating=SATISFIED">Satisfied</a> | '
            '<a href="{{feedbackUrl}}&rating=NEUTRAL">Neutral</a> | '
            '<a href="{{feedbackUrl}}&rating=DISSATISFIED">Dissatisfied</a> | '
            '<a href="{{feedbackUrl}}&rating=VERY_DISSATISFIED">Very dissatisfied</a></p>'
        ),
        "body_plain": (
            "Hello {{userName}},\n\n"
            "Your support ticket #{{ticketNumber}} ({{ticketSubject}}) has been resolved.\n\n"
            "Rate your experience: {{feedbackUrl}}"
        ),
    },
}


def seed_default_templates(db: Session) -> int:
    """Install any missing default templates; existing rows are left untouched."""
    existing = {row.type for row in db.query(EmailTemplate).all()}
    created = 0
    for template_type, content in DEFAULT_TEMPLATES.items():
        if template_type in existing:
            continue
        db.add(EmailTemplate(type=template_type, is_active=True, **content))
        created += 1
    db.commit()
    return created
