"""Ticket inbox/detail/update/reply APIs."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.async_utils import run_async
from app.core.deps import get_current_session, get_db, require_csrf_header, require_roles
from app.core.rate_limit import TICKET_CREATE_LIMIT, limiter
from app.db.enums import Role
from app.db.models import Ticket
from app.schemas.auth import UserSession
from app.schemas.ticketing import (
    BulkDeleteResult,
    BulkFailure,
    BulkUpdateResult,
    CommentCreateRequest,
    CommentRead,
    MarkScamResult,
    MergeResult,
    TicketActivityRead,
    TicketBulkDeleteRequest,
    TicketBulkUpdateRequest,
    TicketCreateRequest,
    TicketDetailResponse,
    TicketListItem,
    TicketListResponse,
    TicketMergeRequest,
    TicketPatchRequest,
    TicketReference,
    TicketSummaryResponse,
)
from app.services import ai_service, merge_service, settings_service, ticket_service
from app.services.ticket_lifecycle_service import UNSET, TicketUpdateCommand
from app.utils.pagination import PaginationParams, get_pagination

router = APIRouter(prefix="/tickets", tags=["Tickets"])

STAFF = [Role.AGENT, Role.ADMIN]


def _to_detail(ticket: Ticket, comments: list, activities: list) -> TicketDetailResponse:
    base = TicketListItem.model_validate(ticket).model_dump()
    return TicketDetailResponse(
        **base,
        description=ticket.description,
        form_id=ticket.form_id,
        category_id=ticket.category_id,
        merged_at=ticket.merged_at,
        comments=[CommentRead.model_validate(c) for c in comments],
        activities=[TicketActivityRead.model_validate(a) for a in activities],
    )


@router.get("", response_model=TicketListResponse)
def list_tickets(
    status: str | None = None,
    priority: str | None = None,
    type: str | None = None,
    assignee_id: UUID | None = None,
    q: str | None = None,
    pagination: PaginationParams = Depends(get_pagination),
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> TicketListResponse:
    """List tickets newest first. Customers only see their own."""
    page = ticket_service.list_tickets(
        db,
        session=session,
        pagination=pagination,
        status=status,
        priority=priority,
        ticket_type=type,
        assignee_id=assignee_id,
        q=q,
    )
    return TicketListResponse(
        items=[TicketListItem.model_validate(ticket) for ticket in page.items],
        total=page.total,
        page=page.page,
        per_page=page.per_page,
        pages=page.pages,
    )


@router.post(
    "",
    response_model=TicketListItem,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
@limiter.limit(TICKET_CREATE_LIMIT)
def create_ticket(
    request: Request,
    data: TicketCreateRequest,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> TicketListItem:
    """Create a ticket from the web app."""
    ticket = ticket_service.create_web_ticket(
        db,
        session=session,
        snapshot=settings_service.get_settings_snapshot(db),
        subject=data.subject,
        description=data.description,
        priority=data.priority,
        form_id=data.form_id,
        category_id=data.category_id,
        requester_email=data.requester_email,
        requester_name=data.requester_name,
        form_responses=data.form_responses,
    )
    return TicketListItem.model_validate(ticket)


# Static paths first so they are not captured by /{ticket_id}

@router.post(
    "/bulk-update",
    response_model=BulkUpdateResult,
    dependencies=[Depends(require_csrf_header)],
)
def bulk_update_tickets(
    data: TicketBulkUpdateRequest,
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_roles(STAFF)),
) -> BulkUpdateResult:
    fields = data.model_dump(exclude_unset=True)
    updated, failures = ticket_service.bulk_update_tickets(
        db,
        ticket_ids=data.ticket_ids,
        actor_id=session.user_id,
        status=data.status,
        priority=data.priority,
        assignee_id=fields["assignee_id"] if "assignee_id" in fields else UNSET,
    )
    return BulkUpdateResult(updated=updated, failed=[BulkFailure(**f) for f in failures])


@router.post(
    "/bulk-delete",
    response_model=BulkDeleteResult,
    dependencies=[Depends(require_csrf_header)],
)
def bulk_delete_tickets(
    data: TicketBulkDeleteRequest,
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_roles([Role.ADMIN])),
) -> BulkDeleteResult:
    deleted = ticket_service.bulk_delete_tickets(db, ticket_ids=data.ticket_ids, actor_id=session.user_id)
    return BulkDeleteResult(deleted=deleted)


@router.post(
    "/merge",
    response_model=MergeResult,
    dependencies=[Depends(require_csrf_header)],
)
def merge_tickets(
    data: TicketMergeRequest,
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_roles(STAFF)),
) -> MergeResult:
    """Close the source tickets into the target. Cross-requester merges need an admin."""
    outcome = merge_service.merge_tickets(
        db,
        target_id=data.target_ticket_id,
        source_ids=data.source_ticket_ids,
        session=session,
        note=data.note,
    )
    return MergeResult(
        target_ticket_id=outcome.target.id,
        target_ticket_number=outcome.target.ticket_number,
        merged_ticket_numbers=outcome.merged_ticket_numbers,
        cross_requester=outcome.cross_requester,
    )


@router.get("/problems/search", response_model=list[TicketReference])
def search_problems(
    q: str | None = None,
    exclude_id: UUID | None = None,
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_roles(STAFF)),
) -> list[TicketReference]:
    problems = merge_service.search_problems(db, q=q, exclude_id=exclude_id)
    return [TicketReference.model_validate(t) for t in problems]


@router.get("/{ticket_id}", response_model=TicketDetailResponse)
def get_ticket_detail(
    ticket_id: UUID,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> TicketDetailResponse:
    """Ticket with its comments; activities are included for staff only."""
    payload = ticket_service.get_ticket_detail(db, ticket_id=ticket_id, session=session)
    return _to_detail(payload["ticket"], payload["comments"], payload["activities"])


@router.patch(
    "/{ticket_id}",
    response_model=TicketListItem,
    dependencies=[Depends(require_csrf_header)],
)
def patch_ticket(
    ticket_id: UUID,
    data: TicketPatchRequest,
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_roles(STAFF)),
) -> TicketListItem:
    """Update status, priority, type, assignee, problem link, subject or category."""
    command = TicketUpdateCommand.from_fields(data.model_dump(exclude_unset=True))
    ticket = ticket_service.patch_ticket(
        db,
        ticket_id=ticket_id,
        command=command,
        actor_id=session.user_id,
    )
    return TicketListItem.model_validate(ticket)


@router.get("/{ticket_id}/merge-candidates", response_model=list[TicketReference])
def list_merge_candidates(
    ticket_id: UUID,
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_roles(STAFF)),
) -> list[TicketReference]:
    candidates = merge_service.list_merge_candidates(db, ticket_id=ticket_id)
    return [TicketReference.model_validate(t) for t in candidates]


@router.post(
    "/{ticket_id}/mark-scam",
    response_model=MarkScamResult,
    dependencies=[Depends(require_csrf_header)],
)
def mark_scam(
    ticket_id: UUID,
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_roles(STAFF)),
) -> MarkScamResult:
    """Delete the ticket and block its requester (admins are never blocked)."""
    ticket_number, blocked = ticket_service.mark_requester_as_scam(
        db, ticket_id=ticket_id, actor_id=session.user_id
    )
    return MarkScamResult(ticket_number=ticket_number, requester_blocked=blocked)


@router.post(
    "/{ticket_id}/summary",
    response_model=TicketSummaryResponse,
    dependencies=[Depends(require_csrf_header)],
)
def summarize_ticket(
    ticket_id: UUID,
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_roles(STAFF)),
) -> TicketSummaryResponse:
    ticket = ticket_service.get_ticket_or_404(db, ticket_id)
    summary = run_async(ai_service.generate_ticket_summary(db, ticket))
    return TicketSummaryResponse(ticket_id=ticket.id, summary=summary)


# =============================================================================
# Comments
# =============================================================================

@router.get("/{ticket_id}/comments", response_model=list[CommentRead])
def list_comments(
    ticket_id: UUID,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> list[CommentRead]:
    comments = ticket_service.list_comments(db, ticket_id=ticket_id, session=session)
    return [CommentRead.model_validate(c) for c in comments]


@router.post(
    "/{ticket_id}/comments",
    response_model=CommentRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def add_comment(
    ticket_id: UUID,
    data: CommentCreateRequest,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> CommentRead:
    """Reply on a ticket. Agent replies move it to PENDING; customer replies reopen it."""
    comment = ticket_service.add_comment(
        db,
        ticket_id=ticket_id,
        session=session,
        snapshot=settings_service.get_settings_snapshot(db),
        body=data.body,
        body_plain=data.body_plain,
        is_internal=data.is_internal,
        mentioned_user_ids=data.mentioned_user_ids,
    )
    return CommentRead.model_validate(comment)
