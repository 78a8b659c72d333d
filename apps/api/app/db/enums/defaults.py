"""Centralized defaults for enums."""

from app.db.enums.jobs import JobStatus
from app.db.enums.ticketing import Channel, TicketPriority, TicketStatus, TicketType


DEFAULT_JOB_STATUS: JobStatus = JobStatus.PENDING
DEFAULT_TICKET_STATUS: TicketStatus = TicketStatus.NEW
DEFAULT_TICKET_PRIORITY: TicketPriority = TicketPriority.NORMAL
DEFAULT_TICKET_TYPE: TicketType = TicketType.NORMAL
DEFAULT_CHANNEL: Channel = Channel.WEB
