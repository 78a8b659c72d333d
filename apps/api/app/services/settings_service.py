"""Admin settings singleton and the read-only snapshot handed to the core."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings as env_settings
from app.db.enums import TicketPriority
from app.db.models import AppSettings
from app.schemas.settings import SettingsPatch, SettingsRead


@dataclass(frozen=True)
class SettingsSnapshot:
    """Immutable view of ``AppSettings`` for one request or automation tick."""

    send_ticket_created_email: bool = True
    send_ticket_resolved_email: bool = True
    auto_close_enabled: bool = False
    auto_close_hours: int = 48
    auto_solve_enabled: bool = False
    auto_solve_hours: int = 72
    default_ticket_priority: TicketPriority = TicketPriority.NORMAL
    allow_customer_reopen_closed: bool = False
    sendgrid_enabled: bool = False
    sendgrid_api_key: str | None = None
    sendgrid_from_email: str | None = None
    sendgrid_from_name: str | None = None
    sendgrid_inbound_domain: str | None = None
    frontend_url: str | None = None
    ai_knowledge_urls: tuple[str, ...] = ()
    ai_knowledge_refresh_days: int = 7

    @classmethod
    def from_model(cls, row: AppSettings) -> "SettingsSnapshot":
        return cls(
            send_ticket_created_email=row.send_ticket_created_email,
            send_ticket_resolved_email=row.send_ticket_resolved_email,
            auto_close_enabled=row.auto_close_enabled,
            auto_close_hours=row.auto_close_hours,
            auto_solve_enabled=row.auto_solve_enabled,
            auto_solve_hours=row.auto_solve_hours,
            default_ticket_priority=TicketPriority(row.default_ticket_priority),
            allow_customer_reopen_closed=row.allow_customer_reopen_closed,
            sendgrid_enabled=row.sendgrid_enabled,
            sendgrid_api_key=row.sendgrid_api_key,
            sendgrid_from_email=row.sendgrid_from_email,
            sendgrid_from_name=row.sendgrid_from_name,
            sendgrid_inbound_domain=row.sendgrid_inbound_domain,
            frontend_url=row.frontend_url,
            ai_knowledge_urls=tuple(row.ai_knowledge_urls or ()),
            ai_knowledge_refresh_days=row.ai_knowledge_refresh_days,
        )


@dataclass(frozen=True)
class EmailConfig:
    """Resolved SendGrid configuration (database overrides, then environment)."""

    api_key: str
    from_email: str
    from_name: str
    inbound_domain: str
    frontend_url: str

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.from_email)

    @property
    def from_domain(self) -> str:
        return self.from_email.rsplit("@", 1)[-1] if "@" in self.from_email else "localhost"


def get_app_settings(db: Session) -> AppSettings:
    """Return the settings row, creating it with defaults on first access."""
    row = db.query(AppSettings).order_by(AppSettings.updated_at).first()
    if row is None:
        row = AppSettings()
        db.add(row)
        db.commit()
        db.refresh(row)
    return row


def get_settings_snapshot(db: Session) -> SettingsSnapshot:
    return SettingsSnapshot.from_model(get_app_settings(db))


def effective_email_config(snapshot: SettingsSnapshot) -> EmailConfig:
    use_db = snapshot.sendgrid_enabled and bool(snapshot.sendgrid_api_key)
    return EmailConfig(
        api_key=(snapshot.sendgrid_api_key if use_db else env_settings.SENDGRID_API_KEY) or "",
        from_email=(use_db and snapshot.sendgrid_from_email) or env_settings.SENDGRID_FROM_EMAIL,
        from_name=(use_db and snapshot.sendgrid_from_name) or env_settings.SENDGRID_FROM_NAME,
        inbound_domain=snapshot.sendgrid_inbound_domain or env_settings.SENDGRID_INBOUND_DOMAIN,
        frontend_url=(snapshot.frontend_url or env_settings.FRONTEND_URL).rstrip("/"),
    )


def update_app_settings(db: Session, patch: SettingsPatch) -> AppSettings:
    """Apply an allow-listed patch. Only fields present in the request change."""
    row = get_app_settings(db)
    changes = patch.model_dump(exclude_unset=True)

    if "default_ticket_priority" in changes:
        value = changes["default_ticket_priority"]
        try:
            changes["default_ticket_priority"] = TicketPriority(value)
        except ValueError:
            raise HTTPException(
                status_code=422,
                detail={"reason": "invalid_priority", "message": f"Invalid priority: {value}"},
            )
    if "ai_knowledge_urls" in changes and changes["ai_knowledge_urls"] is not None:
        changes["ai_knowledge_urls"] = [str(url) for url in changes["ai_knowledge_urls"]]

    for field, value in changes.items():
        if value is None and field not in _NULLABLE_FIELDS:
            continue
        setattr(row, field, value)

    db.commit()
    db.refresh(row)
    return row


_NULLABLE_FIELDS = {
    "sendgrid_api_key",
    "sendgrid_from_email",
    "sendgrid_from_name",
    "sendgrid_inbound_domain",
    "frontend_url",
    "ai_knowledge_urls",
}


def _mask_secret(value: str | None) -> str | None:
    if not value:
        return None
    return f"{value[:4]}...{value[-4:]}" if len(value) > 8 else "****"


def to_read(row: AppSettings) -> SettingsRead:
    return SettingsRead(
        send_ticket_created_email=row.send_ticket_created_email,
        send_ticket_resolved_email=row.send_ticket_resolved_email,
        auto_close_enabled=row.auto_close_enabled,
        auto_close_hours=row.auto_close_hours,
        auto_solve_enabled=row.auto_solve_enabled,
        auto_solve_hours=row.auto_solve_hours,
        default_ticket_priority=TicketPriority(row.default_ticket_priority).value,
        allow_customer_reopen_closed=row.allow_customer_reopen_closed,
        sendgrid_enabled=row.sendgrid_enabled,
        sendgrid_api_key_masked=_mask_secret(row.sendgrid_api_key),
        sendgrid_from_email=row.sendgrid_from_email,
        sendgrid_from_name=row.sendgrid_from_name,
        sendgrid_inbound_domain=row.sendgrid_inbound_domain,
        frontend_url=row.frontend_url,
        ai_knowledge_urls=list(row.ai_knowledge_urls or []),
        ai_knowledge_cache_updated_at=row.ai_knowledge_cache_updated_at,
        ai_knowledge_refresh_days=row.ai_knowledge_refresh_days,
        updated_at=row.updated_at,
    )
