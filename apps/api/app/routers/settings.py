"""Settings endpoints for helpdesk automation, email and AI knowledge."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.async_utils import run_async
from app.core.deps import get_db, require_csrf_header, require_roles
from app.db.enums import Role
from app.schemas.auth import UserSession
from app.schemas.settings import KnowledgeRefreshResponse, SettingsPatch, SettingsRead
from app.services import knowledge_service, settings_service

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("", response_model=SettingsRead)
def get_settings(
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_roles([Role.ADMIN])),
) -> SettingsRead:
    """Current settings; the SendGrid key is masked."""
    return settings_service.to_read(settings_service.get_app_settings(db))


@router.patch(
    "",
    response_model=SettingsRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_settings(
    data: SettingsPatch,
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_roles([Role.ADMIN])),
) -> SettingsRead:
    """Update allow-listed settings. Unknown fields are rejected with 422."""
    row = settings_service.update_app_settings(db, data)
    return settings_service.to_read(row)


@router.post(
    "/knowledge/refresh",
    response_model=KnowledgeRefreshResponse,
    dependencies=[Depends(require_csrf_header)],
)
def refresh_knowledge(
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_roles([Role.ADMIN])),
) -> KnowledgeRefreshResponse:
    """Re-fetch the AI knowledge URLs now instead of waiting for the cache to expire."""
    row = settings_service.get_app_settings(db)
    content = run_async(knowledge_service.refresh_knowledge(db, row))
    fetched = content.count("Source: ") if content else 0
    return KnowledgeRefreshResponse(urls_fetched=fetched, characters=len(content or ""))
