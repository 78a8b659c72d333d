"""FastAPI dependencies for authentication, authorization, and database access."""

from datetime import datetime, timezone
from typing import Generator
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.security import decode_session_token, hash_api_key
from app.db.session import SessionLocal


# Cookie and header names
COOKIE_NAME = "helpdesk_session"
CSRF_HEADER = "X-Requested-With"
CSRF_HEADER_VALUE = "XMLHttpRequest"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Get authenticated user from session cookie.

    Validates:
    - Session cookie exists
    - JWT is valid and not expired
    - User exists
    - Token version matches (for revocation support)

    Raises:
        HTTPException 401: Authentication failed
    """
    # Import here to avoid circular imports
    from app.db.models import User

    token = request.cookies.get(COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = decode_session_token(token)
        user_id = UUID(payload["sub"])
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid session")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    if user.token_version != payload.get("token_version"):
        raise HTTPException(status_code=401, detail="Session revoked")

    return user


def get_current_session(
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Get session context: user_id, role, email.

    This is the PRIMARY auth dependency for most endpoints. The role is
    read from the user row, not the token, so demotions apply immediately.
    """
    from app.db.enums import Role
    from app.schemas.auth import UserSession

    user = get_current_user(request, db)

    return UserSession(
        user_id=user.id,
        role=Role(user.role),
        email=user.email,
        display_name=user.display_name,
        is_blocked=user.is_blocked,
    )


def require_roles(allowed_roles: list):
    """
    Dependency factory for role-based authorization.

    Usage:
        @router.post("/merge", dependencies=[Depends(require_roles([Role.AGENT, Role.ADMIN]))])
    """
    def dependency(request: Request, db: Session = Depends(get_db)):
        session = get_current_session(request, db)
        if session.role not in allowed_roles:
            raise HTTPException(
                status_code=403,
                detail={
                    "reason": "forbidden",
                    "message": f"Role '{session.role.value}' not authorized for this action",
                },
            )
        return session
    return dependency


def require_csrf_header(request: Request) -> None:
    """
    Verify CSRF header on mutations.

    Apply to state-changing endpoints (POST, PATCH, DELETE).

    Raises:
        HTTPException 403: Missing or invalid CSRF header
    """
    if request.headers.get(CSRF_HEADER) != CSRF_HEADER_VALUE:
        raise HTTPException(
            status_code=403,
            detail=f"Missing CSRF header. Include '{CSRF_HEADER}: {CSRF_HEADER_VALUE}'"
        )


def require_api_key(
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    """
    Authenticate a partner API request via ``Authorization: Bearer <key>``.

    Records usage on every successful lookup.

    Raises:
        HTTPException 401: Missing, unknown, or revoked key
    """
    from app.db.models import ApiKey

    scheme, _, raw_key = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not raw_key.strip():
        raise HTTPException(
            status_code=401,
            detail={"reason": "invalid_api_key", "message": "API key required"},
        )

    api_key = (
        db.query(ApiKey)
        .filter(ApiKey.key_hash == hash_api_key(raw_key.strip()))
        .first()
    )
    if not api_key or not api_key.is_active:
        raise HTTPException(
            status_code=401,
            detail={"reason": "invalid_api_key", "message": "Invalid or revoked API key"},
        )

    api_key.last_used_at = datetime.now(timezone.utc)
    api_key.usage_count = (api_key.usage_count or 0) + 1
    db.commit()
    db.refresh(api_key)
    return api_key
