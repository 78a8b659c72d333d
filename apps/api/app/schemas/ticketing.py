"""Pydantic schemas for ticket, comment and merge APIs."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator


# =============================================================================
# Requests
# =============================================================================

class TicketCreateRequest(BaseModel):
    """Web submission. Staff may file on behalf of a customer via requester_email."""

    subject: str = Field(min_length=1, max_length=500)
    description: str = Field(min_length=1)
    priority: str | None = None
    form_id: UUID | None = None
    category_id: UUID | None = None
    requester_email: EmailStr | None = None
    requester_name: str | None = Field(default=None, max_length=255)
    form_responses: dict[str, str] = Field(default_factory=dict)

    @field_validator("subject")
    @classmethod
    def _strip_subject(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("subject cannot be blank")
        return value


class TicketPatchRequest(BaseModel):
    """
    Allow-listed ticket update.

    Omitted fields are left alone; ``assignee_id``/``problem_id`` sent as
    null clear the link. Unknown fields are rejected.
    """

    model_config = {"extra": "forbid"}

    status: str | None = None
    priority: str | None = None
    type: str | None = None
    assignee_id: UUID | None = None
    category_id: UUID | None = None
    subject: str | None = Field(default=None, min_length=1, max_length=500)
    problem_id: UUID | None = None


class TicketBulkUpdateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    ticket_ids: list[UUID] = Field(min_length=1, max_length=200)
    status: str | None = None
    priority: str | None = None
    assignee_id: UUID | None = None


class TicketBulkDeleteRequest(BaseModel):
    ticket_ids: list[UUID] = Field(min_length=1, max_length=200)


class TicketMergeRequest(BaseModel):
    target_ticket_id: UUID
    source_ticket_ids: list[UUID] = Field(min_length=1, max_length=50)
    note: str | None = Field(default=None, max_length=5000)


class CommentCreateRequest(BaseModel):
    body: str = Field(min_length=1)
    body_plain: str | None = None
    is_internal: bool = False
    mentioned_user_ids: list[UUID] = Field(default_factory=list)


# =============================================================================
# Responses
# =============================================================================

class UserSummary(BaseModel):
    id: UUID
    email: str
    display_name: str

    model_config = {"from_attributes": True}


class TicketListItem(BaseModel):
    """Inbox row for a ticket."""

    id: UUID
    ticket_number: int
    subject: str
    status: str
    priority: str
    type: str
    channel: str
    requester: UserSummary
    assignee: UserSummary | None = None
    problem_id: UUID | None = None
    merged_into_id: UUID | None = None
    related_ticket_id: UUID | None = None
    created_at: datetime
    updated_at: datetime
    first_response_at: datetime | None = None
    solved_at: datetime | None = None
    closed_at: datetime | None = None

    model_config = {"from_attributes": True}


class TicketListResponse(BaseModel):
    items: list[TicketListItem]
    total: int
    page: int
    per_page: int
    pages: int


class CommentRead(BaseModel):
    id: UUID
    ticket_id: UUID
    author: UserSummary
    body: str
    body_plain: str | None = None
    is_internal: bool
    is_system: bool
    channel: str
    email_message_id: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TicketActivityRead(BaseModel):
    id: UUID
    user_id: UUID | None = None
    action: str
    details: dict | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TicketDetailResponse(TicketListItem):
    description: str | None = None
    form_id: UUID | None = None
    category_id: UUID | None = None
    merged_at: datetime | None = None
    comments: list[CommentRead] = Field(default_factory=list)
    activities: list[TicketActivityRead] = Field(default_factory=list)


class TicketReference(BaseModel):
    """Compact ticket row for pickers (merge candidates, problem search)."""

    id: UUID
    ticket_number: int
    subject: str
    status: str
    type: str
    created_at: datetime

    model_config = {"from_attributes": True}


class BulkFailure(BaseModel):
    ticket_id: UUID
    reason: str


class BulkUpdateResult(BaseModel):
    updated: int
    failed: list[BulkFailure] = Field(default_factory=list)


class BulkDeleteResult(BaseModel):
    deleted: int


class MergeResult(BaseModel):
    target_ticket_id: UUID
    target_ticket_number: int
    merged_ticket_numbers: list[int]
    cross_requester: bool


class MarkScamResult(BaseModel):
    ticket_number: int
    requester_blocked: bool


class TicketSummaryResponse(BaseModel):
    ticket_id: UUID
    summary: str
