"""Pydantic schemas for inbound email and customer feedback."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from app.db.enums import FeedbackRating


InboundStatus = Literal["success", "ignored", "rejected", "error"]


class InboundEmailResult(BaseModel):
    """Webhook acknowledgement. Always delivered with HTTP 200."""

    status: InboundStatus
    reason: str | None = None
    action: str | None = None
    ticket_number: int | None = None
    comment_id: UUID | None = None
    original_ticket_number: int | None = None
    new_ticket_number: int | None = None
    new_ticket_id: UUID | None = None


class FeedbackSubmitRequest(BaseModel):
    token: str = Field(min_length=1, max_length=64)
    rating: FeedbackRating
    user_comment: str | None = Field(default=None, max_length=5000)


class FeedbackSubmitResponse(BaseModel):
    success: bool = True
    message: str = "Thank you for your feedback!"


class FeedbackVerifyResponse(BaseModel):
    ticket_number: int
    ticket_subject: str
    has_submitted: bool
    rating: FeedbackRating | None = None
    submitted_at: datetime | None = None
