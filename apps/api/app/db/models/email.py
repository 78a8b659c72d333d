"""Outbound email templates and satisfaction feedback."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.enums import EmailTemplateType, FeedbackRating
from app.db.types import enum_column
from app.utils.datetimes import utc_now

if TYPE_CHECKING:
    from app.db.models import Ticket


class EmailTemplate(Base):
    """
    One template per lifecycle email type.

    Bodies use ``{{placeholder}}`` markers.
    """

    __tablename__ = "email_templates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[EmailTemplateType] = mapped_column(
        enum_column(EmailTemplateType, name="email_template_type"), unique=True, nullable=False
    )
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    body_html: Mapped[str] = mapped_column(Text, nullable=False)
    body_plain: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now, nullable=False)


class Feedback(Base):
    """Satisfaction survey issued when a ticket is solved."""

    __tablename__ = "feedback"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    rating: Mapped[FeedbackRating | None] = mapped_column(
        enum_column(FeedbackRating, name="feedback_rating"), nullable=True
    )
    user_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    ticket: Mapped["Ticket"] = relationship(back_populates="feedback_entries")
