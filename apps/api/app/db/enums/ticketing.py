"""Ticket lifecycle enums."""

from enum import Enum


class TicketStatus(str, Enum):
    """Ticket lifecycle status."""

    NEW = "NEW"
    OPEN = "OPEN"
    PENDING = "PENDING"
    ON_HOLD = "ON_HOLD"
    SOLVED = "SOLVED"
    CLOSED = "CLOSED"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


# Statuses counted in the daily backlog snapshot
BACKLOG_STATUSES = (
    TicketStatus.NEW,
    TicketStatus.OPEN,
    TicketStatus.PENDING,
    TicketStatus.ON_HOLD,
)

# Solved or closed: no longer merge-able, not touched by incident cascades
TERMINAL_STATUSES = frozenset({TicketStatus.SOLVED, TicketStatus.CLOSED})


class TicketPriority(str, Enum):
    """Ticket priority level."""

    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TicketType(str, Enum):
    """Problem/incident classification."""

    NORMAL = "NORMAL"
    PROBLEM = "PROBLEM"
    INCIDENT = "INCIDENT"


class Channel(str, Enum):
    """Where a ticket or comment came from."""

    EMAIL = "EMAIL"
    WEB = "WEB"
    API = "API"
    SLACK = "SLACK"
    INTERNAL = "INTERNAL"
    SYSTEM = "SYSTEM"


class TicketActivityAction(str, Enum):
    """Activity log action names."""

    TICKET_CREATED = "ticket_created"
    STATUS_CHANGED = "status_changed"
    PRIORITY_CHANGED = "priority_changed"
    TYPE_CHANGED = "type_changed"
    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"
    SUBJECT_CHANGED = "subject_changed"
    CATEGORY_CHANGED = "category_changed"
    LINKED_TO_PROBLEM = "linked_to_problem"
    UNLINKED_FROM_PROBLEM = "unlinked_from_problem"
    COMMENT_ADDED = "comment_added"
    TICKET_MERGED = "ticket_merged"
    TICKETS_MERGED_IN = "tickets_merged_in"
    TICKET_AUTO_SOLVED = "ticket_auto_solved"
    TICKET_AUTO_CLOSED = "ticket_auto_closed"
