"""AI ticket summaries."""

from __future__ import annotations

import logging

from fastapi import HTTPException
from sqlalchemy.orm import Session, joinedload

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.enums import Role
from app.db.models import Comment, Ticket
from app.services import knowledge_service
from app.services.ai_provider import AIProviderError, ChatMessage, get_provider

logger = logging.getLogger(__name__)

SUMMARY_INSTRUCTIONS = (
    "You are a helpful assistant that summarizes support tickets. Given the following "
    "ticket information, provide a concise 2-3 sentence summary that captures the main "
    "issue, any important context, and current status."
)
SUMMARY_CLOSING = (
    "Provide a brief, professional summary in 2-3 sentences. Focus on what the customer "
    'needs and any key details. Do not use phrases like "The customer" - be direct and concise.'
)


def format_comment(comment: Comment) -> str:
    role = "Customer" if comment.author.role == Role.USER else "Agent"
    visibility = " (Internal Note)" if comment.is_internal else ""
    return f"[{role}{visibility}] {comment.author.display_name}: {comment.body_plain or comment.body}"


def build_summary_prompt(ticket: Ticket, comments: list[Comment], knowledge: str | None = None) -> str:
    """Prompt text for a ticket summary; system comments are left out."""
    formatted_comments = "\n\n".join(format_comment(c) for c in comments if not c.is_system)
    form_data = "\n".join(f"{r.field_key}: {r.value}" for r in ticket.form_responses)

    sections = [
        SUMMARY_INSTRUCTIONS,
        "\n".join(
            [
                f"Ticket Subject: {ticket.subject}",
                f"Status: {ticket.status.value}",
                f"Priority: {ticket.priority.value}",
                f"Requester: {ticket.requester.display_name or ticket.requester.email}",
            ]
        ),
    ]
    if knowledge:
        sections.append(f"Product knowledge (for context):\n{knowledge}")
    if form_data:
        sections.append(f"Form Responses:\n{form_data}")
    sections.append(f"Comments:\n{formatted_comments or 'No comments yet.'}")
    sections.append(SUMMARY_CLOSING)
    return "\n\n".join(sections)


async def generate_ticket_summary(db: Session, ticket: Ticket) -> str:
    """
    Summarize a ticket with the configured model.

    Raises:
        HTTPException: 400 ``ai_not_configured`` without an API key,
            502 ``ai_failed`` when the provider call fails.
    """
    if not settings.ANTHROPIC_API_KEY:
        raise HTTPException(
            status_code=400,
            detail={"reason": "ai_not_configured", "message": "Anthropic API key is not configured"},
        )

    comments = (
        db.query(Comment)
        .options(joinedload(Comment.author))
        .filter(Comment.ticket_id == ticket.id)
        .order_by(Comment.created_at.asc(), Comment.id.asc())
        .all()
    )
    knowledge = await knowledge_service.get_knowledge_content(db)
    prompt = build_summary_prompt(ticket, comments, knowledge)

    provider = get_provider(settings.ANTHROPIC_API_KEY, settings.ANTHROPIC_MODEL)
    try:
        response = await provider.chat(
            [ChatMessage(role="user", content=prompt)],
            max_tokens=settings.AI_SUMMARY_MAX_TOKENS,
        )
    except AIProviderError as exc:
        logger.warning(
            "AI summary failed for ticket #%s: %s",
            ticket.ticket_number,
            exc,
            extra=build_log_context(ticket_id=str(ticket.id), outcome="error"),
        )
        raise HTTPException(
            status_code=502,
            detail={"reason": "ai_failed", "message": "Failed to generate summary"},
        )

    logger.info(
        "Generated AI summary for ticket #%s (%s tokens)",
        ticket.ticket_number,
        response.total_tokens,
    )
    return response.content.strip()
