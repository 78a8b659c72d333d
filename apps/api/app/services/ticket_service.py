"""Ticket service - creation, updates, replies and read paths.

Every mutation commits once; lifecycle emails and the problem cascade run
after the commit (see ``finalize_effects``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

import nh3
from fastapi import HTTPException
from sqlalchemy import or_, text
from sqlalchemy.orm import Session, joinedload

from app.core.structured_logging import build_log_context
from app.db.enums import Channel, Role, TicketActivityAction, TicketEmailEvent, TicketStatus, TicketType
from app.db.models import (
    ApiKey,
    Comment,
    Form,
    FormResponse,
    Notification,
    Ticket,
    TicketActivity,
    User,
)
from app.schemas.auth import UserSession
from app.services import (
    email_service,
    email_thread_service,
    merge_service,
    notification_service,
    user_service,
)
from app.services.settings_service import SettingsSnapshot
from app.services.ticket_lifecycle_service import (
    UNSET,
    LifecycleEffects,
    OutboundEmail,
    TicketUpdateCommand,
    TransitionError,
    apply_reply,
    apply_transitions,
    log_activity,
    parse_priority,
    parse_status,
    parse_type,
    plan_ticket_update,
    unlink_incidents,
)
from app.utils.pagination import Page, PaginationParams, paginate_query

logger = logging.getLogger(__name__)

TICKET_COUNTER = "ticket_number"

# Rich text allowed in web and API bodies
ALLOWED_TAGS = {
    "p", "br", "strong", "em", "u", "s", "ul", "ol", "li", "a", "blockquote",
    "h1", "h2", "h3", "h4", "h5", "h6", "code", "pre", "span", "div", "hr", "sub", "sup", "img",
}
ALLOWED_ATTRIBUTES = {
    "a": {"href", "target"},
    "img": {"src", "alt", "width", "height"},
    "span": {"class"},
    "div": {"class"},
}


def sanitize_html(html: str) -> str:
    """Sanitize HTML to prevent XSS, allowing only safe rich text tags."""
    return nh3.clean(html, tags=ALLOWED_TAGS, attributes=ALLOWED_ATTRIBUTES)


@dataclass
class CreatedTicket:
    ticket: Ticket
    effects: LifecycleEffects = field(default_factory=LifecycleEffects)


def _transition_http_error(exc: TransitionError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"reason": "ticket_not_found", "message": "Ticket not found"},
    )


# =============================================================================
# Numbering
# =============================================================================

def next_ticket_number(db: Session) -> int:
    """Atomically allocate the next ticket number (starts at 1)."""
    result = db.execute(
        text(
            """
            INSERT INTO ticket_counters (counter_type, current_value, updated_at)
            VALUES (:counter_type, 1, CURRENT_TIMESTAMP)
            ON CONFLICT (counter_type)
            DO UPDATE SET current_value = ticket_counters.current_value + 1,
                          updated_at = CURRENT_TIMESTAMP
            RETURNING current_value
            """
        ),
        {"counter_type": TICKET_COUNTER},
    ).scalar_one_or_none()
    if result is None:
        raise RuntimeError("Failed to allocate ticket number")
    return int(result)


# =============================================================================
# Lookups
# =============================================================================

def get_ticket(db: Session, ticket_id: UUID) -> Ticket | None:
    return db.query(Ticket).filter(Ticket.id == ticket_id).first()


def get_ticket_by_number(db: Session, ticket_number: int) -> Ticket | None:
    return db.query(Ticket).filter(Ticket.ticket_number == ticket_number).first()


def get_ticket_or_404(db: Session, ticket_id: UUID) -> Ticket:
    ticket = get_ticket(db, ticket_id)
    if not ticket:
        raise _not_found()
    return ticket


def ensure_ticket_access(ticket: Ticket, session: UserSession) -> None:
    """Customers may only see and act on their own tickets."""
    if session.role == Role.USER and ticket.requester_id != session.user_id:
        raise HTTPException(
            status_code=403,
            detail={"reason": "forbidden", "message": "You do not have access to this ticket"},
        )


def get_ticket_for_session(db: Session, ticket_id: UUID, session: UserSession) -> Ticket:
    ticket = get_ticket_or_404(db, ticket_id)
    ensure_ticket_access(ticket, session)
    return ticket


# =============================================================================
# Creation
# =============================================================================

def build_ticket(
    db: Session,
    *,
    requester: User,
    subject: str,
    description: str | None,
    channel: Channel,
    snapshot: SettingsSnapshot,
    priority: str | None = None,
    form_id: UUID | None = None,
    category_id: UUID | None = None,
    related_ticket_id: UUID | None = None,
    form_responses: dict[str, str] | None = None,
    description_html: str | None = None,
    email_message_id: str | None = None,
    email_from: str | None = None,
    actor_id: UUID | None = None,
    activity_details: dict | None = None,
) -> CreatedTicket:
    """
    Stage a new ticket, its first comment, form responses, activity and
    reply thread in the session. Flushes but does not commit.
    """
    user_service.ensure_not_blocked(requester)

    if form_id is not None:
        form = db.query(Form).filter(Form.id == form_id).first()
        if form is None or not form.is_active:
            raise HTTPException(
                status_code=400,
                detail={"reason": "invalid_form", "message": "Form not found or inactive"},
            )

    try:
        resolved_priority = parse_priority(priority) if priority else snapshot.default_ticket_priority
    except TransitionError as exc:
        raise _transition_http_error(exc)

    ticket = Ticket(
        ticket_number=next_ticket_number(db),
        subject=subject.strip(),
        description=description,
        channel=channel,
        priority=resolved_priority,
        status=TicketStatus.NEW,
        type=TicketType.NORMAL,
        requester_id=requester.id,
        form_id=form_id,
        category_id=category_id,
        related_ticket_id=related_ticket_id,
    )
    db.add(ticket)
    db.flush()

    if description:
        db.add(
            Comment(
                ticket_id=ticket.id,
                author_id=requester.id,
                body=description_html or description,
                body_plain=description,
                is_internal=False,
                channel=channel,
                email_message_id=email_message_id,
                email_from=email_from,
            )
        )

    for field_key, value in (form_responses or {}).items():
        if value is None or str(value).strip() == "":
            continue
        db.add(FormResponse(ticket_id=ticket.id, field_key=field_key, value=str(value)))

    log_activity(
        db,
        ticket.id,
        TicketActivityAction.TICKET_CREATED,
        user_id=actor_id or requester.id,
        details={
            "ticket_number": ticket.ticket_number,
            "channel": Channel(channel).value,
            **(activity_details or {}),
        },
    )
    email_thread_service.create_thread(db, ticket.id)

    effects = LifecycleEffects(
        emails=[OutboundEmail(TicketEmailEvent.TICKET_CREATED, ticket.id, "initial")]
    )
    return CreatedTicket(ticket=ticket, effects=effects)


def create_ticket(db: Session, **kwargs) -> Ticket:
    """Create a ticket in one transaction, then queue the created email."""
    try:
        created = build_ticket(db, **kwargs)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(created.ticket)
    logger.info(
        "Created ticket #%s",
        created.ticket.ticket_number,
        extra=build_log_context(ticket_id=str(created.ticket.id), outcome="created"),
    )
    finalize_effects(db, created.effects, actor_id=kwargs.get("actor_id"))
    return created.ticket


def create_web_ticket(
    db: Session,
    *,
    session: UserSession,
    snapshot: SettingsSnapshot,
    subject: str,
    description: str,
    priority: str | None = None,
    form_id: UUID | None = None,
    category_id: UUID | None = None,
    requester_email: str | None = None,
    requester_name: str | None = None,
    form_responses: dict[str, str] | None = None,
) -> Ticket:
    """Web submission: customers file for themselves, staff may file on behalf of a customer."""
    actor = user_service.get_user(db, session.user_id)
    if actor is None:
        raise HTTPException(status_code=401, detail="User not found")
    user_service.ensure_not_blocked(actor)

    requester = actor
    if requester_email and session.is_staff:
        requester = user_service.find_or_create_customer(
            db, email=requester_email, display_name=requester_name
        )

    return create_ticket(
        db,
        requester=requester,
        subject=subject,
        description=sanitize_html(description),
        channel=Channel.WEB,
        snapshot=snapshot,
        # Customers cannot pick their own priority
        priority=priority if session.is_staff else None,
        form_id=form_id,
        category_id=category_id,
        form_responses=form_responses,
        actor_id=actor.id,
        activity_details={"created_by_staff": True} if requester.id != actor.id else None,
    )


def create_api_ticket(
    db: Session,
    *,
    api_key: ApiKey,
    snapshot: SettingsSnapshot,
    email: str,
    name: str | None,
    subject: str,
    description: str,
    priority: str | None = None,
    form_id: UUID | None = None,
    form_responses: dict[str, str] | None = None,
) -> Ticket:
    """Partner API submission; unknown requesters are provisioned as customers."""
    if api_key.form_id is not None:
        if form_id is not None and form_id != api_key.form_id:
            raise HTTPException(
                status_code=403,
                detail={"reason": "form_not_allowed", "message": "This API key is restricted to another form"},
            )
        form_id = api_key.form_id

    requester = user_service.find_or_create_customer(db, email=email, display_name=name)
    return create_ticket(
        db,
        requester=requester,
        subject=subject,
        description=sanitize_html(description),
        channel=Channel.API,
        snapshot=snapshot,
        priority=priority,
        form_id=form_id,
        form_responses=form_responses,
        actor_id=requester.id,
        activity_details={"api_key_id": str(api_key.id), "api_key_name": api_key.name},
    )


# =============================================================================
# Updates
# =============================================================================

def finalize_effects(db: Session, effects: LifecycleEffects, *, actor_id: UUID | None) -> None:
    """Post-commit side effects: queue emails, then cascade solved problems."""
    email_service.queue_ticket_emails(db, effects.emails)
    for problem_id in effects.solved_problem_ids:
        merge_service.cascade_problem_resolution(db, problem_id, actor_id=actor_id)


def patch_ticket(
    db: Session,
    *,
    ticket_id: UUID,
    command: TicketUpdateCommand,
    actor_id: UUID,
) -> Ticket:
    """Apply a structured update as one transaction (all transitions or none)."""
    ticket = get_ticket_or_404(db, ticket_id)
    if command.is_empty:
        return ticket

    assignee = None
    if command.assignee_id is not UNSET and command.assignee_id is not None:
        assignee = user_service.get_user(db, command.assignee_id)
    problem = None
    if command.problem_id is not UNSET and command.problem_id is not None:
        problem = get_ticket(db, command.problem_id)

    try:
        was_problem = TicketType(ticket.type) == TicketType.PROBLEM
        plan = plan_ticket_update(ticket, command, assignee=assignee, problem=problem)
        effects = apply_transitions(db, ticket, plan, actor_id=actor_id)
        if was_problem and TicketType(ticket.type) != TicketType.PROBLEM:
            unlink_incidents(db, ticket, actor_id=actor_id)
        if assignee is not None and any(t.rule == "assigned" for t in plan):
            notification_service.notify_ticket_assigned(
                db, ticket, assignee.id, user_service.get_user(db, actor_id)
            )
        db.commit()
    except TransitionError as exc:
        db.rollback()
        raise _transition_http_error(exc)
    except Exception:
        db.rollback()
        raise

    db.refresh(ticket)
    logger.info(
        "Updated ticket #%s (%s)",
        ticket.ticket_number,
        ", ".join(t.rule for t in plan) or "no changes",
        extra=build_log_context(ticket_id=str(ticket.id), outcome="updated"),
    )
    finalize_effects(db, effects, actor_id=actor_id)
    return ticket


def bulk_update_tickets(
    db: Session,
    *,
    ticket_ids: list[UUID],
    actor_id: UUID,
    status: str | None = None,
    priority: str | None = None,
    assignee_id: UUID | None | object = UNSET,
) -> tuple[int, list[dict]]:
    """
    Patch each ticket independently.

    Returns ``(updated_count, failures)``; one bad ticket does not stop the rest.
    """
    # Validate shared values once so a typo fails the whole request
    try:
        if status is not None:
            parse_status(status)
        if priority is not None:
            parse_priority(priority)
    except TransitionError as exc:
        raise _transition_http_error(exc)

    command = TicketUpdateCommand(status=status, priority=priority, assignee_id=assignee_id)
    updated = 0
    failures: list[dict] = []
    for ticket_id in dict.fromkeys(ticket_ids):
        try:
            patch_ticket(db, ticket_id=ticket_id, command=command, actor_id=actor_id)
            updated += 1
        except HTTPException as exc:
            detail = exc.detail if isinstance(exc.detail, dict) else {"reason": str(exc.detail)}
            failures.append({"ticket_id": ticket_id, "reason": detail.get("reason", "error")})
    return updated, failures


def _delete_tickets(db: Session, ticket_ids: list[UUID]) -> int:
    """Hard-delete tickets, detaching references from surviving tickets first."""
    if not ticket_ids:
        return 0
    for column in (Ticket.problem_id, Ticket.merged_into_id, Ticket.related_ticket_id):
        db.query(Ticket).filter(column.in_(ticket_ids), Ticket.id.notin_(ticket_ids)).update(
            {column: None}, synchronize_session=False
        )
    db.query(Notification).filter(Notification.ticket_id.in_(ticket_ids)).delete(
        synchronize_session=False
    )
    tickets = db.query(Ticket).filter(Ticket.id.in_(ticket_ids)).all()
    for ticket in tickets:
        # Self references inside the deleted set
        ticket.problem_id = None
        ticket.merged_into_id = None
        ticket.related_ticket_id = None
    db.flush()
    for ticket in tickets:
        db.delete(ticket)
    return len(tickets)


def bulk_delete_tickets(db: Session, *, ticket_ids: list[UUID], actor_id: UUID) -> int:
    try:
        deleted = _delete_tickets(db, list(dict.fromkeys(ticket_ids)))
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Bulk deleted %s tickets (actor=%s)", deleted, actor_id)
    return deleted


def mark_requester_as_scam(db: Session, *, ticket_id: UUID, actor_id: UUID) -> tuple[int, bool]:
    """
    Delete the ticket and block its requester.

    Admin requesters are never blocked. Returns ``(ticket_number, blocked)``.
    """
    ticket = get_ticket_or_404(db, ticket_id)
    requester = ticket.requester
    ticket_number = ticket.ticket_number
    blocked = False
    try:
        if requester is not None and requester.role != Role.ADMIN:
            requester.is_blocked = True
            requester.token_version += 1
            blocked = True
        _delete_tickets(db, [ticket.id])
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.warning(
        "Ticket #%s deleted as scam (requester blocked=%s, actor=%s)",
        ticket_number,
        blocked,
        actor_id,
    )
    return ticket_number, blocked


# =============================================================================
# Comments
# =============================================================================

def add_comment(
    db: Session,
    *,
    ticket_id: UUID,
    session: UserSession,
    snapshot: SettingsSnapshot,
    body: str,
    body_plain: str | None = None,
    is_internal: bool = False,
    mentioned_user_ids: list[UUID] | None = None,
) -> Comment:
    """Add a web reply and run the reply-driven status rules."""
    ticket = get_ticket_for_session(db, ticket_id, session)
    author = user_service.get_user(db, session.user_id)
    if author is None:
        raise HTTPException(status_code=401, detail="User not found")
    user_service.ensure_not_blocked(author)

    try:
        outcome = apply_reply(
            db,
            ticket,
            author,
            body=sanitize_html(body),
            body_plain=body_plain,
            is_internal=is_internal,
            channel=Channel.WEB,
            allow_reopen_closed=snapshot.allow_customer_reopen_closed,
        )
        if mentioned_user_ids and author.is_staff:
            notification_service.notify_mentions(db, ticket, author, mentioned_user_ids)
        db.commit()
    except TransitionError as exc:
        db.rollback()
        raise _transition_http_error(exc)
    except Exception:
        db.rollback()
        raise

    db.refresh(outcome.comment)
    finalize_effects(db, outcome.effects, actor_id=author.id)
    return outcome.comment


def list_comments(db: Session, *, ticket_id: UUID, session: UserSession) -> list[Comment]:
    get_ticket_for_session(db, ticket_id, session)
    query = (
        db.query(Comment)
        .options(joinedload(Comment.author))
        .filter(Comment.ticket_id == ticket_id)
    )
    if not session.is_staff:
        query = query.filter(Comment.is_internal.is_(False))
    return query.order_by(Comment.created_at.asc(), Comment.id.asc()).all()


# =============================================================================
# Read paths
# =============================================================================

def list_tickets(
    db: Session,
    *,
    session: UserSession,
    pagination: PaginationParams,
    status: str | None = None,
    priority: str | None = None,
    ticket_type: str | None = None,
    assignee_id: UUID | None = None,
    q: str | None = None,
) -> Page[Ticket]:
    """List tickets newest first; customers only see their own."""
    query = db.query(Ticket).options(joinedload(Ticket.requester), joinedload(Ticket.assignee))

    if session.role == Role.USER:
        query = query.filter(Ticket.requester_id == session.user_id)

    try:
        if status:
            query = query.filter(Ticket.status == parse_status(status))
        if priority:
            query = query.filter(Ticket.priority == parse_priority(priority))
        if ticket_type:
            query = query.filter(Ticket.type == parse_type(ticket_type))
    except TransitionError as exc:
        raise _transition_http_error(exc)

    if assignee_id:
        query = query.filter(Ticket.assignee_id == assignee_id)

    if q and q.strip():
        term = q.strip().lstrip("#")
        conditions = [Ticket.subject.ilike(f"%{term}%")]
        if term.isdigit():
            conditions.append(Ticket.ticket_number == int(term))
        query = query.filter(or_(*conditions))

    query = query.order_by(Ticket.created_at.desc(), Ticket.ticket_number.desc())
    return paginate_query(query, pagination)


def get_ticket_detail(db: Session, *, ticket_id: UUID, session: UserSession) -> dict:
    """Ticket with comments (internal hidden from customers) and, for staff, activities."""
    ticket = get_ticket_for_session(db, ticket_id, session)
    comments = list_comments(db, ticket_id=ticket.id, session=session)
    activities: list[TicketActivity] = []
    if session.is_staff:
        activities = (
            db.query(TicketActivity)
            .filter(TicketActivity.ticket_id == ticket.id)
            .order_by(TicketActivity.created_at.asc())
            .all()
        )
    return {"ticket": ticket, "comments": comments, "activities": activities}

