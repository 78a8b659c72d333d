"""Pydantic schemas for the partner ticket API."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class ExternalTicketCreate(BaseModel):
    email: EmailStr
    name: str | None = Field(default=None, max_length=255)
    subject: str = Field(min_length=1, max_length=500)
    description: str = Field(min_length=1)
    priority: str | None = None
    form_id: UUID | None = None
    form_responses: dict[str, str] = Field(default_factory=dict)


class ExternalTicketRead(BaseModel):
    id: UUID
    ticket_number: int
    subject: str
    status: str
    priority: str
    form_id: UUID | None = None
    created_at: datetime
    updated_at: datetime
    solved_at: datetime | None = None

    model_config = {"from_attributes": True}
