"""Pydantic schemas for admin settings."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, HttpUrl


class SettingsPatch(BaseModel):
    """
    Allow-listed settings update.

    Any field not declared here is rejected with 422; hour thresholds
    must be at least one hour.
    """

    model_config = {"extra": "forbid"}

    send_ticket_created_email: bool | None = None
    send_ticket_resolved_email: bool | None = None
    auto_close_enabled: bool | None = None
    auto_close_hours: int | None = Field(default=None, ge=1)
    auto_solve_enabled: bool | None = None
    auto_solve_hours: int | None = Field(default=None, ge=1)
    default_ticket_priority: str | None = None
    allow_customer_reopen_closed: bool | None = None
    sendgrid_enabled: bool | None = None
    sendgrid_api_key: str | None = None
    sendgrid_from_email: str | None = None
    sendgrid_from_name: str | None = None
    sendgrid_inbound_domain: str | None = None
    frontend_url: str | None = None
    ai_knowledge_urls: list[HttpUrl] | None = Field(default=None, max_length=50)
    ai_knowledge_refresh_days: int | None = Field(default=None, ge=1, le=365)


class SettingsRead(BaseModel):
    send_ticket_created_email: bool
    send_ticket_resolved_email: bool
    auto_close_enabled: bool
    auto_close_hours: int
    auto_solve_enabled: bool
    auto_solve_hours: int
    default_ticket_priority: str
    allow_customer_reopen_closed: bool
    sendgrid_enabled: bool
    sendgrid_api_key_masked: str | None = None
    sendgrid_from_email: str | None = None
    sendgrid_from_name: str | None = None
    sendgrid_inbound_domain: str | None = None
    frontend_url: str | None = None
    ai_knowledge_urls: list[str] = Field(default_factory=list)
    ai_knowledge_cache_updated_at: datetime | None = None
    ai_knowledge_refresh_days: int
    updated_at: datetime


class KnowledgeRefreshResponse(BaseModel):
    urls_fetched: int
    characters: int
    refreshed_at: datetime | None = None
