"""Ticket, comment, activity and reply-thread models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.enums import (
    DEFAULT_CHANNEL,
    DEFAULT_TICKET_PRIORITY,
    DEFAULT_TICKET_STATUS,
    DEFAULT_TICKET_TYPE,
    Channel,
    TicketPriority,
    TicketStatus,
    TicketType,
)
from app.db.types import JSONType, enum_column
from app.utils.datetimes import utc_now

if TYPE_CHECKING:
    from app.db.models import Feedback, Form, User


class Ticket(Base):
    """
    Support ticket.

    ``ticket_number`` is the human-facing sequence (see ``TicketCounter``).
    A ticket with ``merged_into_id`` set is CLOSED and frozen.
    """

    __tablename__ = "tickets"
    __table_args__ = (
        Index("idx_tickets_status_updated", "status", "updated_at"),
        Index("idx_tickets_requester", "requester_id", "created_at"),
        Index("idx_tickets_assignee", "assignee_id"),
        Index("idx_tickets_problem", "problem_id"),
        Index("idx_tickets_solved_at", "status", "solved_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_number: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    channel: Mapped[Channel] = mapped_column(
        enum_column(Channel, name="ticket_channel", length=16),
        default=DEFAULT_CHANNEL,
        nullable=False,
    )
    priority: Mapped[TicketPriority] = mapped_column(
        enum_column(TicketPriority, name="ticket_priority", length=16),
        default=DEFAULT_TICKET_PRIORITY,
        nullable=False,
    )
    status: Mapped[TicketStatus] = mapped_column(
        enum_column(TicketStatus, name="ticket_status", length=16),
        default=DEFAULT_TICKET_STATUS,
        nullable=False,
    )
    type: Mapped[TicketType] = mapped_column(
        enum_column(TicketType, name="ticket_type", length=16),
        default=DEFAULT_TICKET_TYPE,
        nullable=False,
    )

    requester_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    assignee_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    form_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("forms.id", ondelete="SET NULL"), nullable=True
    )
    category_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    related_ticket_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True
    )
    merged_into_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True
    )
    problem_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now, nullable=False)
    first_response_at: Mapped[datetime | None] = mapped_column(nullable=True)
    solved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    merged_at: Mapped[datetime | None] = mapped_column(nullable=True)

    requester: Mapped["User"] = relationship(foreign_keys=[requester_id])
    assignee: Mapped["User | None"] = relationship(foreign_keys=[assignee_id])
    form: Mapped["Form | None"] = relationship()
    problem: Mapped["Ticket | None"] = relationship(
        foreign_keys=[problem_id], remote_side=[id], back_populates="incidents"
    )
    incidents: Mapped[list["Ticket"]] = relationship(
        foreign_keys=[problem_id], back_populates="problem"
    )
    merged_into: Mapped["Ticket | None"] = relationship(
        foreign_keys=[merged_into_id], remote_side=[id]
    )
    related_ticket: Mapped["Ticket | None"] = relationship(
        foreign_keys=[related_ticket_id], remote_side=[id]
    )
    comments: Mapped[list["Comment"]] = relationship(
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by=lambda: [Comment.created_at, Comment.id],
    )
    activities: Mapped[list["TicketActivity"]] = relationship(
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="TicketActivity.created_at",
    )
    email_thread: Mapped["EmailThread | None"] = relationship(
        back_populates="ticket", cascade="all, delete-orphan", uselist=False
    )
    form_responses: Mapped[list["FormResponse"]] = relationship(
        back_populates="ticket", cascade="all, delete-orphan"
    )
    feedback_entries: Mapped[list["Feedback"]] = relationship(
        back_populates="ticket", cascade="all, delete-orphan"
    )

    @property
    def is_merged(self) -> bool:
        return self.merged_into_id is not None


class Comment(Base):
    """Reply or note on a ticket. Ordered by ``(created_at, id)``."""

    __tablename__ = "comments"
    __table_args__ = (Index("idx_comments_ticket_created", "ticket_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    body_plain: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_internal: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    is_system: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    channel: Mapped[Channel] = mapped_column(
        enum_column(Channel, name="comment_channel", length=16),
        default=DEFAULT_CHANNEL,
        nullable=False,
    )
    email_message_id: Mapped[str | None] = mapped_column(String(998), nullable=True)
    email_from: Mapped[str | None] = mapped_column(String(320), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    ticket: Mapped["Ticket"] = relationship(back_populates="comments")
    author: Mapped["User"] = relationship()


class TicketActivity(Base):
    """Append-only audit entry for a ticket mutation."""

    __tablename__ = "ticket_activities"
    __table_args__ = (Index("idx_ticket_activities_ticket", "ticket_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    ticket: Mapped["Ticket"] = relationship(back_populates="activities")


class EmailThread(Base):
    """
    Reply-routing record, one per ticket.

    ``reply_token`` is the bearer capability embedded in the Reply-To
    address; it is never rotated.
    """

    __tablename__ = "email_threads"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    reply_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    message_id: Mapped[str | None] = mapped_column(String(998), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now, nullable=False)

    ticket: Mapped["Ticket"] = relationship(back_populates="email_thread")


class FormResponse(Base):
    """A submitted form field value, written with the ticket."""

    __tablename__ = "form_responses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    field_key: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    ticket: Mapped["Ticket"] = relationship(back_populates="form_responses")


class TicketCounter(Base):
    """Sequence row for ticket numbers, incremented with an atomic upsert."""

    __tablename__ = "ticket_counters"

    counter_type: Mapped[str] = mapped_column(String(50), primary_key=True)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)


class BacklogSnapshot(Base):
    """Daily count of unresolved tickets, one row per UTC date."""

    __tablename__ = "backlog_snapshots"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    snapshot_date: Mapped[date] = mapped_column("date", Date, unique=True, nullable=False)
    new_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    open_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pending_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    hold_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now, nullable=False)
