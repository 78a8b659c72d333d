"""Merge and Problem/Incident service.

Merges collapse duplicate tickets into a target in one transaction. Solving a
PROBLEM cascades SOLVED to its open incidents, one incident per transaction.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.core.structured_logging import build_log_context
from app.db.enums import TERMINAL_STATUSES, Role, TicketActivityAction, TicketStatus, TicketType
from app.db.models import Comment, Ticket
from app.schemas.auth import UserSession
from app.services import email_service
from app.services.ticket_lifecycle_service import (
    add_system_comment,
    apply_status_change,
    log_activity,
)
from app.utils.datetimes import utc_now

logger = logging.getLogger(__name__)

MAX_PICKER_RESULTS = 20


@dataclass
class MergeOutcome:
    target: Ticket
    merged_ticket_numbers: list[int]
    cross_requester: bool


def _error(status_code: int, reason: str, message: str, **extra) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"reason": reason, "message": message, **extra})


# =============================================================================
# Merge
# =============================================================================

def merge_tickets(
    db: Session,
    *,
    target_id: UUID,
    source_ids: list[UUID],
    session: UserSession,
    note: str | None = None,
) -> MergeOutcome:
    """
    Close every source into ``target_id``.

    Cross-requester merges need ADMIN. Nothing is written unless every
    check passes.
    """
    source_ids = list(dict.fromkeys(source_ids))
    if target_id in source_ids:
        raise _error(400, "self_merge", "Cannot merge a ticket into itself")

    target = db.query(Ticket).filter(Ticket.id == target_id).first()
    if target is None:
        raise _error(404, "target_not_found", "Target ticket not found")
    if target.status in TERMINAL_STATUSES or target.merged_into_id is not None:
        raise _error(400, "target_closed", "Cannot merge into a solved or closed ticket")

    sources = db.query(Ticket).filter(Ticket.id.in_(source_ids)).order_by(Ticket.ticket_number).all()
    if len(sources) != len(source_ids):
        found = {ticket.id for ticket in sources}
        raise _error(
            404,
            "sources_not_found",
            "One or more source tickets not found",
            missing_ticket_ids=[str(ticket_id) for ticket_id in source_ids if ticket_id not in found],
        )

    closed = [t for t in sources if t.status in TERMINAL_STATUSES or t.merged_into_id is not None]
    if closed:
        raise _error(
            400,
            "sources_closed",
            "Cannot merge solved or closed tickets",
            invalid_tickets=[t.ticket_number for t in closed],
        )

    different_requesters = [t for t in sources if t.requester_id != target.requester_id]
    if different_requesters and session.role != Role.ADMIN:
        raise _error(
            403,
            "cross_requester_requires_admin",
            "Only admins can merge tickets from different requesters",
        )

    now = utc_now()
    numbers = [t.ticket_number for t in sources]
    number_list = ", ".join(f"#{n}" for n in numbers)

    try:
        for source in sources:
            source.status = TicketStatus.CLOSED
            source.merged_into_id = target.id
            source.merged_at = now
            source.closed_at = now
            source.updated_at = now
            log_activity(
                db,
                source.id,
                TicketActivityAction.TICKET_MERGED,
                user_id=session.user_id,
                details={
                    "merged_into_ticket_id": str(target.id),
                    "merged_into_ticket_number": target.ticket_number,
                    "reason": "closed_by_merge",
                },
            )
            add_system_comment(
                db,
                source,
                author_id=session.user_id,
                body=f"<p>This ticket has been merged into Ticket #{target.ticket_number}.</p>",
                body_plain=f"This ticket has been merged into Ticket #{target.ticket_number}.",
                created_at=now,
            )

        log_activity(
            db,
            target.id,
            TicketActivityAction.TICKETS_MERGED_IN,
            user_id=session.user_id,
            details={
                "merged_ticket_ids": [str(t.id) for t in sources],
                "merged_ticket_numbers": numbers,
                "has_different_requesters": bool(different_requesters),
            },
        )

        if note and note.strip():
            plain = f"{note.strip()}\n\nMerged from tickets: {number_list}"
            body = f"<p>{html.escape(note.strip())}</p><p><em>Merged from tickets: {number_list}</em></p>"
        else:
            plain = f"The following tickets have been merged into this ticket: {number_list}"
            body = f"<p><em>{plain}</em></p>"
        add_system_comment(
            db, target, author_id=session.user_id, body=body, body_plain=plain, is_internal=True, created_at=now
        )

        if different_requesters:
            requester_info = ", ".join(
                f"{t.requester.display_name} ({t.requester.email})" for t in different_requesters
            )
            plain = f"Note: Merged tickets had different requesters: {requester_info}"
            add_system_comment(
                db,
                target,
                author_id=session.user_id,
                body=f"<p><em>{html.escape(plain)}</em></p>",
                body_plain=plain,
                is_internal=True,
                created_at=now,
            )

        target.updated_at = now
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(target)
    logger.info(
        "Merged %s into #%s",
        number_list,
        target.ticket_number,
        extra=build_log_context(ticket_id=str(target.id), outcome="merged"),
    )
    return MergeOutcome(
        target=target,
        merged_ticket_numbers=numbers,
        cross_requester=bool(different_requesters),
    )


def list_merge_candidates(db: Session, *, ticket_id: UUID) -> list[Ticket]:
    """Other open, unmerged tickets from the same requester, newest first."""
    ticket = db.query(Ticket).filter(Ticket.id == ticket_id).first()
    if ticket is None:
        raise _error(404, "ticket_not_found", "Ticket not found")
    return (
        db.query(Ticket)
        .filter(
            Ticket.id != ticket.id,
            Ticket.requester_id == ticket.requester_id,
            Ticket.status.notin_(list(TERMINAL_STATUSES)),
            Ticket.merged_into_id.is_(None),
        )
        .order_by(Ticket.created_at.desc())
        .limit(MAX_PICKER_RESULTS)
        .all()
    )


def search_problems(db: Session, *, q: str | None = None, exclude_id: UUID | None = None) -> list[Ticket]:
    """PROBLEM tickets that are not CLOSED, by number or subject."""
    query = db.query(Ticket).filter(
        Ticket.type == TicketType.PROBLEM,
        Ticket.status != TicketStatus.CLOSED,
    )
    if exclude_id:
        query = query.filter(Ticket.id != exclude_id)
    if q and q.strip():
        term = q.strip().lstrip("#")
        if term.isdigit():
            query = query.filter(Ticket.ticket_number == int(term))
        else:
            query = query.filter(Ticket.subject.ilike(f"%{term}%"))
    return query.order_by(Ticket.created_at.desc()).limit(MAX_PICKER_RESULTS).all()


# =============================================================================
# Problem -> incident cascade
# =============================================================================

def latest_public_comment(db: Session, ticket_id: UUID) -> Comment | None:
    return (
        db.query(Comment)
        .filter(Comment.ticket_id == ticket_id, Comment.is_internal.is_(False))
        .order_by(Comment.created_at.desc(), Comment.id.desc())
        .first()
    )


def cascade_problem_resolution(
    db: Session,
    problem_id: UUID,
    *,
    actor_id: UUID | None,
) -> int:
    """
    Solve every open incident linked to a solved PROBLEM.

    Each incident is its own transaction; a failure is logged and the loop
    continues. Returns how many incidents were solved.
    """
    problem = db.query(Ticket).filter(Ticket.id == problem_id).first()
    if problem is None or problem.type != TicketType.PROBLEM or problem.status != TicketStatus.SOLVED:
        return 0

    resolution = latest_public_comment(db, problem.id)
    author_id = actor_id or problem.assignee_id or problem.requester_id
    incident_ids = [
        row.id
        for row in db.query(Ticket.id)
        .filter(
            Ticket.problem_id == problem.id,
            Ticket.type == TicketType.INCIDENT,
            Ticket.status.notin_(list(TERMINAL_STATUSES)),
            Ticket.merged_into_id.is_(None),
        )
        .order_by(Ticket.ticket_number)
        .all()
    ]

    solved = 0
    for incident_id in incident_ids:
        try:
            incident = db.query(Ticket).filter(Ticket.id == incident_id).one()
            effects = apply_status_change(
                db,
                incident,
                TicketStatus.SOLVED,
                actor_id=actor_id,
                details={
                    "reason": "auto_solved_with_problem",
                    "problem_ticket_id": str(problem.id),
                    "problem_ticket_number": problem.ticket_number,
                },
            )
            if resolution is not None:
                header = f"Resolution copied from Problem Ticket #{problem.ticket_number}:"
                add_system_comment(
                    db,
                    incident,
                    author_id=author_id,
                    body=f"<p><em>{header}</em></p>{resolution.body}",
                    body_plain=f"{header}\n\n{resolution.body_plain or resolution.body}",
                )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(
                "Failed to cascade problem #%s to incident %s",
                problem.ticket_number,
                incident_id,
                extra=build_log_context(ticket_id=str(incident_id), outcome="error"),
            )
            continue
        solved += 1
        email_service.queue_ticket_emails(db, effects.emails)

    if solved:
        logger.info("Auto-solved %s incidents for problem ticket #%s", solved, problem.ticket_number)
    return solved
