"""Email-related enums."""

from enum import Enum


class EmailTemplateType(str, Enum):
    """Outbound ticket email templates."""

    TICKET_CREATED = "TICKET_CREATED"
    NEW_REPLY = "NEW_REPLY"
    TICKET_RESOLVED = "TICKET_RESOLVED"
    FEEDBACK_REQUEST = "FEEDBACK_REQUEST"


class TicketEmailEvent(str, Enum):
    """Lifecycle events that request an outbound email."""

    TICKET_CREATED = "ticket_created"
    AGENT_REPLY = "agent_reply"
    TICKET_RESOLVED = "ticket_resolved"
    FEEDBACK_REQUEST = "feedback_request"


EVENT_TEMPLATES: dict[TicketEmailEvent, EmailTemplateType] = {
    TicketEmailEvent.TICKET_CREATED: EmailTemplateType.TICKET_CREATED,
    TicketEmailEvent.AGENT_REPLY: EmailTemplateType.NEW_REPLY,
    TicketEmailEvent.TICKET_RESOLVED: EmailTemplateType.TICKET_RESOLVED,
    TicketEmailEvent.FEEDBACK_REQUEST: EmailTemplateType.FEEDBACK_REQUEST,
}


class FeedbackRating(str, Enum):
    """Customer satisfaction rating."""

    VERY_DISSATISFIED = "VERY_DISSATISFIED"
    DISSATISFIED = "DISSATISFIED"
    NEUTRAL = "NEUTRAL"
    SATISFIED = "SATISFIED"
    VERY_SATISFIED = "VERY_SATISFIED"
