"""Enum definitions for application constants."""

from app.db.enums.auth import Role, STAFF_ROLES
from app.db.enums.defaults import (
    DEFAULT_CHANNEL,
    DEFAULT_JOB_STATUS,
    DEFAULT_TICKET_PRIORITY,
    DEFAULT_TICKET_STATUS,
    DEFAULT_TICKET_TYPE,
)
from app.db.enums.email import (
    EVENT_TEMPLATES,
    EmailTemplateType,
    FeedbackRating,
    TicketEmailEvent,
)
from app.db.enums.jobs import JobStatus, JobType
from app.db.enums.notifications import NotificationType
from app.db.enums.ticketing import (
    BACKLOG_STATUSES,
    TERMINAL_STATUSES,
    Channel,
    TicketActivityAction,
    TicketPriority,
    TicketStatus,
    TicketType,
)

__all__ = [
    "BACKLOG_STATUSES",
    "Channel",
    "DEFAULT_CHANNEL",
    "DEFAULT_JOB_STATUS",
    "DEFAULT_TICKET_PRIORITY",
    "DEFAULT_TICKET_STATUS",
    "DEFAULT_TICKET_TYPE",
    "EVENT_TEMPLATES",
    "EmailTemplateType",
    "FeedbackRating",
    "JobStatus",
    "JobType",
    "NotificationType",
    "Role",
    "STAFF_ROLES",
    "TERMINAL_STATUSES",
    "TicketActivityAction",
    "TicketEmailEvent",
    "TicketPriority",
    "TicketStatus",
    "TicketType",
]
