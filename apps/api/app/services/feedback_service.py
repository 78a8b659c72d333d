"""Satisfaction feedback issued with the feedback-request email."""

from __future__ import annotations

import secrets

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.db.enums import FeedbackRating
from app.db.models import Feedback, Ticket
from app.utils.datetimes import utc_now


def get_or_create_feedback(db: Session, ticket: Ticket) -> Feedback:
    """Reuse the ticket's open (unsubmitted) survey, else issue a new token."""
    feedback = (
        db.query(Feedback)
        .filter(Feedback.ticket_id == ticket.id, Feedback.submitted_at.is_(None))
        .order_by(Feedback.created_at.desc())
        .first()
    )
    if feedback:
        return feedback
    feedback = Feedback(ticket_id=ticket.id, token=secrets.token_hex(32))
    db.add(feedback)
    db.commit()
    db.refresh(feedback)
    return feedback


def feedback_url(frontend_url: str, token: str) -> str:
    return f"{frontend_url.rstrip('/')}/feedback?token={token}"


def get_feedback_by_token(db: Session, token: str) -> Feedback:
    feedback = db.query(Feedback).filter(Feedback.token == token).first()
    if not feedback:
        raise HTTPException(
            status_code=404,
            detail={"reason": "feedback_not_found", "message": "Invalid or expired feedback link"},
        )
    return feedback


def submit_feedback(
    db: Session,
    *,
    token: str,
    rating: FeedbackRating,
    user_comment: str | None = None,
) -> Feedback:
    feedback = get_feedback_by_token(db, token)
    if feedback.submitted_at is not None:
        raise HTTPException(
            status_code=400,
            detail={
                "reason": "feedback_already_submitted",
                "message": "Feedback has already been submitted for this ticket",
            },
        )
    feedback.rating = rating
    feedback.user_comment = (user_comment or "").strip() or None
    feedback.submitted_at = utc_now()
    db.commit()
    db.refresh(feedback)
    return feedback
