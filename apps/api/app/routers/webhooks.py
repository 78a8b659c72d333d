"""Webhooks router - SendGrid Inbound Parse."""

import logging

from fastapi import APIRouter, Depends, Form
from sqlalchemy.orm import Session

from app.core.deps import get_db
from app.schemas.email import InboundEmailResult
from app.services import inbound_email_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/sendgrid/inbound", response_model=InboundEmailResult, response_model_exclude_none=True)
def receive_inbound_email(
    from_: str | None = Form(default=None, alias="from"),
    to: str | None = Form(default=None),
    subject: str | None = Form(default=None),
    text: str | None = Form(default=None),
    html: str | None = Form(default=None),
    headers: str | None = Form(default=None),
    db: Session = Depends(get_db),
) -> InboundEmailResult:
    """
    Receive a customer reply from SendGrid Inbound Parse (multipart/form-data).

    Always answers 200 so SendGrid never retries; the body carries the
    outcome (success, ignored, rejected, error) and a reason code.
    """
    result = inbound_email_service.process_inbound_email(
        db,
        sender=from_,
        recipients=to,
        subject=subject,
        text=text,
        html_body=html,
        headers=headers,
    )
    return InboundEmailResult(**result.to_dict())
