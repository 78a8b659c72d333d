"""User lookup and just-in-time provisioning."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.db.enums import Role
from app.db.models import User
from app.jobs.utils import mask_email
from app.utils.normalization import display_name_from_email, normalize_email, normalize_name

logger = logging.getLogger(__name__)


def get_user(db: Session, user_id: UUID) -> User | None:
    return db.query(User).filter(User.id == user_id).first()


def find_or_create_customer(
    db: Session,
    *,
    email: str,
    display_name: str | None = None,
) -> User:
    """
    Return the user for ``email``, creating a USER account if unknown.

    Flushes but does not commit, so the caller's transaction owns the row.
    """
    normalized = normalize_email(email)
    if not normalized:
        raise HTTPException(status_code=400, detail={"reason": "invalid_email", "message": "Email is required"})

    user = db.query(User).filter(User.email == normalized).first()
    if user:
        return user

    user = User(
        email=normalized,
        display_name=normalize_name(display_name) or display_name_from_email(normalized),
        role=Role.USER,
    )
    db.add(user)
    db.flush()
    logger.info("Created customer account for %s", mask_email(normalized))
    return user


def ensure_not_blocked(user: User) -> None:
    if user.is_blocked:
        raise HTTPException(
            status_code=403,
            detail={"reason": "user_blocked", "message": "This account is blocked"},
        )
