"""Runtime business settings (single row)."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.enums import DEFAULT_TICKET_PRIORITY, TicketPriority
from app.db.types import JSONType, enum_column
from app.utils.datetimes import utc_now


class AppSettings(Base):
    """
    Admin-editable settings singleton.

    Read once per request or automation tick and passed around as a
    ``SettingsSnapshot``; see ``settings_service``.
    """

    __tablename__ = "app_settings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Email toggles
    send_ticket_created_email: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    send_ticket_resolved_email: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Status automation
    auto_close_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_close_hours: Mapped[int] = mapped_column(Integer, default=48, nullable=False)
    auto_solve_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_solve_hours: Mapped[int] = mapped_column(Integer, default=72, nullable=False)

    default_ticket_priority: Mapped[TicketPriority] = mapped_column(
        enum_column(TicketPriority, name="ticket_priority", length=16),
        default=DEFAULT_TICKET_PRIORITY,
        nullable=False,
    )
    allow_customer_reopen_closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # SendGrid overrides (fall back to environment when disabled or unset)
    sendgrid_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sendgrid_api_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sendgrid_from_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    sendgrid_from_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sendgrid_inbound_domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    frontend_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # AI knowledge cache
    ai_knowledge_urls: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    ai_knowledge_cache: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_knowledge_cache_updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    ai_knowledge_refresh_days: Mapped[int] = mapped_column(Integer, default=7, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now, nullable=False)
