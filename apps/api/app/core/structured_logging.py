"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    ticket_id: str | None = None,
    job_id: str | None = None,
    job_type: str | None = None,
    route: str | None = None,
    outcome: str | None = None,
    reason: str | None = None,
) -> dict[str, Any]:
    """Return a flat log context dict for ``extra=``; no email addresses or bodies."""
    context: dict[str, Any] = {}
    if ticket_id:
        context["ticket_id"] = ticket_id
    if job_id:
        context["job_id"] = job_id
    if job_type:
        context["job_type"] = job_type
    if route:
        context["route"] = route
    if outcome:
        context["outcome"] = outcome
    if reason:
        context["reason"] = reason
    return context
