"""SQLAlchemy ORM models."""

from app.db.models.auth import User
from app.db.models.email import EmailTemplate, Feedback
from app.db.models.forms import Form
from app.db.models.integrations import ApiKey
from app.db.models.jobs import Job
from app.db.models.notifications import Notification
from app.db.models.settings import AppSettings
from app.db.models.ticketing import (
    BacklogSnapshot,
    Comment,
    EmailThread,
    FormResponse,
    Ticket,
    TicketActivity,
    TicketCounter,
)

__all__ = [
    "ApiKey",
    "AppSettings",
    "BacklogSnapshot",
    "Comment",
    "EmailTemplate",
    "EmailThread",
    "Feedback",
    "Form",
    "FormResponse",
    "Job",
    "Notification",
    "Ticket",
    "TicketActivity",
    "TicketCounter",
    "User",
]
