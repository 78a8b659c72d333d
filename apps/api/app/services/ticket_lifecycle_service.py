"""
Ticket status state machine.

Each derived transition is a named rule that returns a ``TicketTransition``
(attribute changes plus the activity entry to log). ``plan_ticket_update``
turns a structured ``TicketUpdateCommand`` into an ordered list of them;
``apply_transitions`` writes them to the session without committing, so the
caller owns the transaction boundary.

Outbound emails are never sent from here: rules return ``OutboundEmail``
requests which the caller queues after commit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.db.enums import (
    STAFF_ROLES,
    TERMINAL_STATUSES,
    Channel,
    TicketActivityAction,
    TicketEmailEvent,
    TicketPriority,
    TicketStatus,
    TicketType,
)
from app.db.models import Comment, Ticket, TicketActivity, User
from app.utils.datetimes import epoch_millis, utc_now


class _Unset(Enum):
    UNSET = "UNSET"


UNSET = _Unset.UNSET

# Types that always run at URGENT priority
URGENT_TYPES = frozenset({TicketType.INCIDENT, TicketType.PROBLEM})


class TransitionError(ValueError):
    """A command violates a lifecycle rule. ``reason`` is the public error code."""

    def __init__(self, reason: str, message: str, *, status_code: int = 400, **extra: Any):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.status_code = status_code
        self.extra = extra

    def to_detail(self) -> dict[str, Any]:
        return {"reason": self.reason, "message": self.message, **self.extra}


@dataclass(frozen=True)
class TicketUpdateCommand:
    """
    Structured ticket update.

    ``None`` on a plain field means "leave alone". Link fields use ``UNSET``
    for "leave alone" so that ``None`` can mean "clear".
    """

    status: str | None = None
    priority: str | None = None
    type: str | None = None
    subject: str | None = None
    category_id: UUID | None | _Unset = UNSET
    assignee_id: UUID | None | _Unset = UNSET
    problem_id: UUID | None | _Unset = UNSET

    @classmethod
    def from_fields(cls, fields: dict[str, Any]) -> "TicketUpdateCommand":
        """Build from ``model_dump(exclude_unset=True)`` output."""
        return cls(
            status=fields.get("status"),
            priority=fields.get("priority"),
            type=fields.get("type"),
            subject=fields.get("subject"),
            category_id=fields.get("category_id", UNSET),
            assignee_id=fields.get("assignee_id", UNSET),
            problem_id=fields.get("problem_id", UNSET),
        )

    @property
    def is_empty(self) -> bool:
        return (
            self.status is None
            and self.priority is None
            and self.type is None
            and self.subject is None
            and self.category_id is UNSET
            and self.assignee_id is UNSET
            and self.problem_id is UNSET
        )


@dataclass
class TicketTransition:
    rule: str
    changes: dict[str, Any] = field(default_factory=dict)
    action: TicketActivityAction | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OutboundEmail:
    """Request for a lifecycle email; ``key`` makes the queued job idempotent."""

    event: TicketEmailEvent
    ticket_id: UUID
    key: str
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def idempotency_key(self) -> str:
        return f"{self.event.value}:{self.ticket_id}:{self.key}"


@dataclass
class LifecycleEffects:
    """Side effects to run once the transaction has committed."""

    emails: list[OutboundEmail] = field(default_factory=list)
    solved_problem_ids: list[UUID] = field(default_factory=list)

    def extend(self, other: "LifecycleEffects") -> None:
        self.emails.extend(other.emails)
        self.solved_problem_ids.extend(other.solved_problem_ids)


# =============================================================================
# Value parsing
# =============================================================================

def parse_status(value: str | TicketStatus) -> TicketStatus:
    try:
        return TicketStatus(value)
    except ValueError:
        raise TransitionError("invalid_status", f"Invalid status: {value}", status_code=422)


def parse_priority(value: str | TicketPriority) -> TicketPriority:
    try:
        return TicketPriority(value)
    except ValueError:
        raise TransitionError("invalid_priority", f"Invalid priority: {value}", status_code=422)


def parse_type(value: str | TicketType) -> TicketType:
    try:
        return TicketType(value)
    except ValueError:
        raise TransitionError("invalid_type", f"Invalid ticket type: {value}", status_code=422)


def ensure_mutable(ticket: Ticket) -> None:
    if ticket.merged_into_id is not None:
        raise TransitionError(
            "ticket_merged",
            f"Ticket #{ticket.ticket_number} was merged and can no longer change",
        )


# =============================================================================
# Rules
# =============================================================================

def status_transition(
    ticket: Ticket,
    new_status: TicketStatus,
    *,
    now: datetime,
    rule: str = "status_changed",
    details: dict[str, Any] | None = None,
) -> TicketTransition:
    """
    Move to ``new_status`` and stamp its timestamps.

    Logged even when the status does not change.
    """
    old_status = TicketStatus(ticket.status)
    changes: dict[str, Any] = {"status": new_status}
    if new_status == TicketStatus.SOLVED:
        changes["solved_at"] = now
    elif new_status == TicketStatus.CLOSED:
        changes["closed_at"] = now
    elif old_status in TERMINAL_STATUSES:
        changes["solved_at"] = None
        changes["closed_at"] = None
    return TicketTransition(
        rule=rule,
        changes=changes,
        action=TicketActivityAction.STATUS_CHANGED,
        details={
            "new_status": new_status.value,
            "previous_status": old_status.value,
            **(details or {}),
        },
    )


def status_after_staff_reply(current: TicketStatus, *, is_internal: bool) -> TicketStatus | None:
    """Public staff reply waits on the customer; solved/closed tickets stay put."""
    if is_internal or current in TERMINAL_STATUSES or current == TicketStatus.PENDING:
        return None
    return TicketStatus.PENDING


def status_after_customer_reply(
    current: TicketStatus, *, allow_reopen_closed: bool = False
) -> TicketStatus | None:
    """PENDING and SOLVED reopen; CLOSED only when the setting allows it."""
    if current in (TicketStatus.PENDING, TicketStatus.SOLVED):
        return TicketStatus.OPEN
    if current == TicketStatus.CLOSED and allow_reopen_closed:
        return TicketStatus.OPEN
    return None


def status_after_assignment(
    current: TicketStatus, *, assignee_id: UUID | None, explicit_status: bool
) -> TicketStatus | None:
    """Taking a NEW ticket opens it unless the same command sets a status."""
    if assignee_id is not None and current == TicketStatus.NEW and not explicit_status:
        return TicketStatus.OPEN
    return None


def assignment_transition(ticket: Ticket, assignee: User | None) -> TicketTransition:
    if assignee is None:
        return TicketTransition(
            rule="unassigned",
            changes={"assignee_id": None},
            action=TicketActivityAction.UNASSIGNED,
            details={"previous_assignee_id": _str_or_none(ticket.assignee_id)},
        )
    if assignee.role not in STAFF_ROLES:
        raise TransitionError(
            "invalid_assignee", "Assignee must be an agent or admin", assignee_id=str(assignee.id)
        )
    return TicketTransition(
        rule="assigned",
        changes={"assignee_id": assignee.id},
        action=TicketActivityAction.ASSIGNED,
        details={"assignee_id": str(assignee.id), "assignee_name": assignee.display_name},
    )


def urgent_priority_transition(ticket_priority: TicketPriority, *, reason: str) -> TicketTransition | None:
    if ticket_priority == TicketPriority.URGENT:
        return None
    return TicketTransition(
        rule="priority_forced_urgent",
        changes={"priority": TicketPriority.URGENT},
        action=TicketActivityAction.PRIORITY_CHANGED,
        details={
            "previous_priority": TicketPriority(ticket_priority).value,
            "new_priority": TicketPriority.URGENT.value,
            "reason": reason,
        },
    )


def plan_ticket_update(
    ticket: Ticket,
    command: TicketUpdateCommand,
    *,
    assignee: User | None = None,
    problem: Ticket | None = None,
    now: datetime | None = None,
) -> list[TicketTransition]:
    """
    Translate ``command`` into ordered transitions.

    ``assignee`` and ``problem`` are the rows referenced by the command's
    ``assignee_id``/``problem_id`` (None when the id was unknown).
    """
    ensure_mutable(ticket)
    now = now or utc_now()
    plan: list[TicketTransition] = []

    current_type = TicketType(ticket.type)
    current_priority = TicketPriority(ticket.priority)
    forced_urgent = False

    # -- type ------------------------------------------------------------
    if command.type is not None:
        new_type = parse_type(command.type)
        linking = command.problem_id is not UNSET and command.problem_id is not None
        if linking and new_type != TicketType.INCIDENT:
            raise TransitionError("invalid_type", "Only INCIDENT tickets can be linked to a problem")
        plan.append(
            TicketTransition(
                rule="type_changed",
                changes={"type": new_type},
                action=TicketActivityAction.TYPE_CHANGED,
                details={"previous_type": current_type.value, "new_type": new_type.value},
            )
        )
        if new_type in URGENT_TYPES:
            forced = urgent_priority_transition(current_priority, reason=f"type_{new_type.value.lower()}")
            if forced:
                plan.append(forced)
                current_priority = TicketPriority.URGENT
            forced_urgent = True
        if new_type != TicketType.INCIDENT and ticket.problem_id is not None and command.problem_id is UNSET:
            plan.append(
                TicketTransition(
                    rule="unlinked_from_problem",
                    changes={"problem_id": None},
                    action=TicketActivityAction.UNLINKED_FROM_PROBLEM,
                    details={"problem_id": str(ticket.problem_id), "reason": "type_changed"},
                )
            )
        current_type = new_type

    # -- problem link ----------------------------------------------------
    if command.problem_id is not UNSET:
        if command.problem_id is None:
            if ticket.problem_id is not None:
                plan.append(
                    TicketTransition(
                        rule="unlinked_from_problem",
                        changes={"problem_id": None},
                        action=TicketActivityAction.UNLINKED_FROM_PROBLEM,
                        details={"problem_id": str(ticket.problem_id)},
                    )
                )
        else:
            if problem is None:
                raise TransitionError(
                    "problem_not_found", "Problem ticket not found", status_code=404
                )
            if problem.id == ticket.id or TicketType(problem.type) != TicketType.PROBLEM:
                raise TransitionError(
                    "not_a_problem",
                    f"Ticket #{problem.ticket_number} is not a PROBLEM ticket",
                )
            if command.type is None and current_type != TicketType.INCIDENT:
                plan.append(
                    TicketTransition(
                        rule="type_changed",
                        changes={"type": TicketType.INCIDENT},
                        action=TicketActivityAction.TYPE_CHANGED,
                        details={
                            "previous_type": current_type.value,
                            "new_type": TicketType.INCIDENT.value,
                            "reason": "linked_to_problem",
                        },
                    )
                )
                current_type = TicketType.INCIDENT
            forced = urgent_priority_transition(current_priority, reason="linked_to_problem")
            if forced:
                plan.append(forced)
                current_priority = TicketPriority.URGENT
            forced_urgent = True
            plan.append(
                TicketTransition(
                    rule="linked_to_problem",
                    changes={"problem_id": problem.id},
                    action=TicketActivityAction.LINKED_TO_PROBLEM,
                    details={
                        "problem_id": str(problem.id),
                        "problem_ticket_number": problem.ticket_number,
                    },
                )
            )

    # -- priority (a forced URGENT in the same command wins) -------------
    if command.priority is not None:
        new_priority = parse_priority(command.priority)
        if not forced_urgent:
            plan.append(
                TicketTransition(
                    rule="priority_changed",
                    changes={"priority": new_priority},
                    action=TicketActivityAction.PRIORITY_CHANGED,
                    details={
                        "previous_priority": current_priority.value,
                        "new_priority": new_priority.value,
                    },
                )
            )

    # -- assignment ------------------------------------------------------
    new_status = parse_status(command.status) if command.status is not None else None
    if command.assignee_id is not UNSET:
        if command.assignee_id is not None and assignee is None:
            raise TransitionError("invalid_assignee", "Assignee not found")
        plan.append(assignment_transition(ticket, assignee))
        auto_status = status_after_assignment(
            TicketStatus(ticket.status),
            assignee_id=command.assignee_id,
            explicit_status=new_status is not None,
        )
        if auto_status is not None:
            plan.append(
                status_transition(
                    ticket,
                    auto_status,
                    now=now,
                    rule="auto_open_on_assign",
                    details={"reason": "auto_on_assign"},
                )
            )

    # -- status ----------------------------------------------------------
    if new_status is not None:
        plan.append(status_transition(ticket, new_status, now=now))

    # -- plain fields ----------------------------------------------------
    if command.subject is not None and command.subject.strip() != ticket.subject:
        plan.append(
            TicketTransition(
                rule="subject_changed",
                changes={"subject": command.subject.strip()},
                action=TicketActivityAction.SUBJECT_CHANGED,
                details={"previous_subject": ticket.subject},
            )
        )
    if command.category_id is not UNSET and command.category_id != ticket.category_id:
        plan.append(
            TicketTransition(
                rule="category_changed",
                changes={"category_id": command.category_id},
                action=TicketActivityAction.CATEGORY_CHANGED,
                details={"category_id": _str_or_none(command.category_id)},
            )
        )

    return plan


# =============================================================================
# Applying
# =============================================================================

def log_activity(
    db: Session,
    ticket_id: UUID,
    action: TicketActivityAction | str,
    *,
    user_id: UUID | None,
    details: dict[str, Any] | None = None,
) -> TicketActivity:
    activity = TicketActivity(
        ticket_id=ticket_id,
        user_id=user_id,
        action=action.value if isinstance(action, TicketActivityAction) else action,
        details=details or {},
    )
    db.add(activity)
    return activity


def apply_transitions(
    db: Session,
    ticket: Ticket,
    transitions: list[TicketTransition],
    *,
    actor_id: UUID | None,
) -> LifecycleEffects:
    """Write transitions and their activities; report post-commit effects."""
    for transition in transitions:
        for attr, value in transition.changes.items():
            setattr(ticket, attr, value)
        if transition.action is not None:
            log_activity(db, ticket.id, transition.action, user_id=actor_id, details=transition.details)

    effects = LifecycleEffects()
    solved_now = any(
        t.changes.get("status") == TicketStatus.SOLVED for t in transitions
    )
    if solved_now:
        effects.emails.extend(resolution_emails(ticket))
        if TicketType(ticket.type) == TicketType.PROBLEM:
            effects.solved_problem_ids.append(ticket.id)
    if transitions:
        ticket.updated_at = utc_now()
    return effects


def unlink_incidents(db: Session, problem: Ticket, *, actor_id: UUID | None) -> int:
    """Detach every incident from a ticket that is no longer a PROBLEM."""
    incidents = db.query(Ticket).filter(Ticket.problem_id == problem.id).all()
    for incident in incidents:
        apply_transitions(
            db,
            incident,
            [
                TicketTransition(
                    rule="unlinked_from_problem",
                    changes={"problem_id": None},
                    action=TicketActivityAction.UNLINKED_FROM_PROBLEM,
                    details={
                        "problem_id": str(problem.id),
                        "problem_ticket_number": problem.ticket_number,
                        "reason": "problem_type_changed",
                    },
                )
            ],
            actor_id=actor_id,
        )
    return len(incidents)


def resolution_emails(ticket: Ticket) -> list[OutboundEmail]:
    """Resolved + feedback-request emails for a ticket that just reached SOLVED."""
    key = str(epoch_millis(ticket.solved_at))
    return [
        OutboundEmail(TicketEmailEvent.TICKET_RESOLVED, ticket.id, key),
        OutboundEmail(TicketEmailEvent.FEEDBACK_REQUEST, ticket.id, key),
    ]


def apply_status_change(
    db: Session,
    ticket: Ticket,
    new_status: str | TicketStatus,
    *,
    actor_id: UUID | None,
    details: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> LifecycleEffects:
    """Validate and apply one status change (flush-free, no commit)."""
    ensure_mutable(ticket)
    status = parse_status(new_status)
    transition = status_transition(ticket, status, now=now or utc_now(), details=details)
    return apply_transitions(db, ticket, [transition], actor_id=actor_id)


@dataclass
class ReplyOutcome:
    comment: Comment
    new_status: TicketStatus | None
    effects: LifecycleEffects


def apply_reply(
    db: Session,
    ticket: Ticket,
    author: User,
    *,
    body: str,
    body_plain: str | None = None,
    is_internal: bool = False,
    channel: Channel = Channel.WEB,
    email_message_id: str | None = None,
    email_from: str | None = None,
    allow_reopen_closed: bool = False,
    activity_details: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> ReplyOutcome:
    """
    Add a reply and run the reply-driven status rules.

    Customers cannot post internal notes; the flag is silently dropped.
    """
    ensure_mutable(ticket)
    now = now or utc_now()
    is_staff = author.role in STAFF_ROLES
    if not is_staff:
        is_internal = False

    comment = Comment(
        ticket_id=ticket.id,
        author_id=author.id,
        body=body,
        body_plain=body_plain,
        is_internal=is_internal,
        channel=channel,
        email_message_id=email_message_id,
        email_from=email_from,
        created_at=now,
    )
    db.add(comment)
    db.flush()

    current = TicketStatus(ticket.status)
    if is_staff:
        next_status = status_after_staff_reply(current, is_internal=is_internal)
        reason = "agent_reply"
        if not is_internal and ticket.first_response_at is None and author.id != ticket.requester_id:
            ticket.first_response_at = now
    else:
        next_status = status_after_customer_reply(current, allow_reopen_closed=allow_reopen_closed)
        reason = "customer_reply"

    transitions: list[TicketTransition] = []
    if next_status is not None:
        transitions.append(
            status_transition(
                ticket,
                next_status,
                now=now,
                rule=reason,
                details={"reason": reason, "channel": Channel(channel).value},
            )
        )
    transitions.append(
        TicketTransition(
            rule="comment_added",
            action=TicketActivityAction.COMMENT_ADDED,
            details={
                "comment_id": str(comment.id),
                "is_internal": is_internal,
                "channel": Channel(channel).value,
                **(activity_details or {}),
            },
        )
    )
    effects = apply_transitions(db, ticket, transitions, actor_id=author.id)

    if is_staff and not is_internal and author.id != ticket.requester_id:
        effects.emails.append(
            OutboundEmail(
                TicketEmailEvent.AGENT_REPLY,
                ticket.id,
                str(comment.id),
                extra={
                    "agentName": author.display_name,
                    "replyContent": body_plain or body,
                },
            )
        )
    return ReplyOutcome(comment=comment, new_status=next_status, effects=effects)


def add_system_comment(
    db: Session,
    ticket: Ticket,
    *,
    author_id: UUID,
    body: str,
    body_plain: str | None = None,
    is_internal: bool = False,
    created_at: datetime | None = None,
) -> Comment:
    """Provenance note written by the system; never affects status."""
    comment = Comment(
        ticket_id=ticket.id,
        author_id=author_id,
        body=body,
        body_plain=body_plain if body_plain is not None else body,
        is_internal=is_internal,
        is_system=True,
        channel=Channel.SYSTEM,
        created_at=created_at or utc_now(),
    )
    db.add(comment)
    return comment


def _str_or_none(value: UUID | None) -> str | None:
    return str(value) if value is not None else None
