"""Partner ticket API authenticated by API key (``Authorization: Bearer <key>``)."""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.deps import get_db, require_api_key
from app.core.rate_limit import TICKET_CREATE_LIMIT, limiter
from app.db.models import ApiKey
from app.schemas.external_api import ExternalTicketCreate, ExternalTicketRead
from app.services import settings_service, ticket_service

router = APIRouter(prefix="/api/v1", tags=["external-api"])


@router.post("/tickets", response_model=ExternalTicketRead, status_code=201)
@limiter.limit(TICKET_CREATE_LIMIT)
def create_ticket(
    request: Request,
    data: ExternalTicketCreate,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db),
) -> ExternalTicketRead:
    """Create a ticket for ``email``; unknown requesters get a customer account."""
    ticket = ticket_service.create_api_ticket(
        db,
        api_key=api_key,
        snapshot=settings_service.get_settings_snapshot(db),
        email=data.email,
        name=data.name,
        subject=data.subject,
        description=data.description,
        priority=data.priority,
        form_id=data.form_id,
        form_responses=data.form_responses,
    )
    return ExternalTicketRead.model_validate(ticket)


@router.get("/tickets/{ticket_number}", response_model=ExternalTicketRead)
def get_ticket(
    ticket_number: int,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db),
) -> ExternalTicketRead:
    ticket = ticket_service.get_ticket_by_number(db, ticket_number)
    if not ticket:
        raise HTTPException(
            status_code=404,
            detail={"reason": "ticket_not_found", "message": "Ticket not found"},
        )
    if api_key.form_id is not None and ticket.form_id != api_key.form_id:
        raise HTTPException(
            status_code=403,
            detail={"reason": "form_not_allowed", "message": "This API key cannot access tickets from this form"},
        )
    return ExternalTicketRead.model_validate(ticket)
