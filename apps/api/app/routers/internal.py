"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from an external scheduler: ticket-automation hourly, backlog-snapshot daily.
"""
from datetime import date

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import get_db
from app.core.security import secrets_match
from app.services import ticket_automation_service


router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str | None = Header(default=None)) -> None:
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if not x_internal_secret or not secrets_match(x_internal_secret, expected):
        raise HTTPException(status_code=403, detail="Invalid internal secret")


class AutomationRunResponse(BaseModel):
    auto_solved: int
    auto_closed: int
    notifications_deleted: int
    errors: dict[str, str]


class BacklogSnapshotResponse(BaseModel):
    snapshot_date: date
    new_count: int
    open_count: int
    pending_count: int
    hold_count: int
    total_count: int


@router.post(
    "/ticket-automation",
    response_model=AutomationRunResponse,
    dependencies=[Depends(verify_internal_secret)],
)
def run_ticket_automation(db: Session = Depends(get_db)) -> AutomationRunResponse:
    """Hourly: auto-solve, auto-close, then notification cleanup. Failures are reported, not raised."""
    report = ticket_automation_service.run_ticket_automation(db)
    return AutomationRunResponse(**report.to_dict())


@router.post(
    "/backlog-snapshot",
    response_model=BacklogSnapshotResponse,
    dependencies=[Depends(verify_internal_secret)],
)
def capture_backlog_snapshot(db: Session = Depends(get_db)) -> BacklogSnapshotResponse:
    """Daily: upsert today's backlog counts (safe to call more than once)."""
    row = ticket_automation_service.capture_backlog_snapshot(db)
    return BacklogSnapshotResponse(
        snapshot_date=row.snapshot_date,
        new_count=row.new_count,
        open_count=row.open_count,
        pending_count=row.pending_count,
        hold_count=row.hold_count,
        total_count=row.total_count,
    )
