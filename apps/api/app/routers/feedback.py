"""Public customer feedback endpoints (token from the feedback-request email)."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.deps import get_db
from app.core.rate_limit import PUBLIC_LIMIT, limiter
from app.schemas.email import FeedbackSubmitRequest, FeedbackSubmitResponse, FeedbackVerifyResponse
from app.services import feedback_service

router = APIRouter(prefix="/feedback", tags=["feedback"])


@router.get("/verify/{token}", response_model=FeedbackVerifyResponse)
@limiter.limit(PUBLIC_LIMIT)
def verify_feedback_token(
    request: Request,
    token: str,
    db: Session = Depends(get_db),
) -> FeedbackVerifyResponse:
    feedback = feedback_service.get_feedback_by_token(db, token)
    return FeedbackVerifyResponse(
        ticket_number=feedback.ticket.ticket_number,
        ticket_subject=feedback.ticket.subject,
        has_submitted=feedback.submitted_at is not None,
        rating=feedback.rating,
        submitted_at=feedback.submitted_at,
    )


@router.post("", response_model=FeedbackSubmitResponse)
@limiter.limit(PUBLIC_LIMIT)
def submit_feedback(
    request: Request,
    data: FeedbackSubmitRequest,
    db: Session = Depends(get_db),
) -> FeedbackSubmitResponse:
    """Record a rating once; a second submission is refused."""
    feedback_service.submit_feedback(
        db,
        token=data.token,
        rating=data.rating,
        user_comment=data.user_comment,
    )
    return FeedbackSubmitResponse()
