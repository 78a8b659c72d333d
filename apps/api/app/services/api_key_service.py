"""Partner API key issuance."""

from uuid import UUID

from sqlalchemy.orm import Session

from app.core.security import generate_api_key, hash_api_key
from app.db.models import ApiKey


def create_api_key(db: Session, *, name: str, form_id: UUID | None = None) -> tuple[ApiKey, str]:
    """Create a key and return it with the raw secret (shown once, never stored)."""
    raw_key = generate_api_key()
    api_key = ApiKey(
        name=name,
        key_hash=hash_api_key(raw_key),
        key_prefix=raw_key[:12],
        form_id=form_id,
        is_active=True,
    )
    db.add(api_key)
    db.commit()
    db.refresh(api_key)
    return api_key, raw_key


def revoke_api_key(db: Session, api_key_id: UUID) -> ApiKey | None:
    api_key = db.query(ApiKey).filter(ApiKey.id == api_key_id).first()
    if api_key and api_key.is_active:
        api_key.is_active = False
        db.commit()
    return api_key
