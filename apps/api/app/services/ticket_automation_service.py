"""Scheduled ticket automation: auto-solve, auto-close, backlog snapshots.

Invoked hourly (``run_ticket_automation``) and daily (``capture_backlog_snapshot``)
from the internal scheduled endpoints or the CLI. Both are safe to re-run.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.enums import BACKLOG_STATUSES, STAFF_ROLES, TicketActivityAction, TicketStatus
from app.db.models import BacklogSnapshot, Comment, Ticket, User
from app.services import merge_service, notification_service, settings_service
from app.services.settings_service import SettingsSnapshot
from app.services.ticket_lifecycle_service import apply_transitions, log_activity, status_transition
from app.utils.datetimes import as_utc, utc_date_key, utc_now

logger = logging.getLogger(__name__)


@dataclass
class AutomationReport:
    auto_solved: int = 0
    auto_closed: int = 0
    notifications_deleted: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def _last_human_comment(db: Session, ticket_id) -> tuple[Comment, User] | None:
    """Most recent non-system comment with its author."""
    return (
        db.query(Comment, User)
        .join(User, User.id == Comment.author_id)
        .filter(Comment.ticket_id == ticket_id, Comment.is_system.is_(False))
        .order_by(Comment.created_at.desc(), Comment.id.desc())
        .first()
    )


def run_auto_solve(db: Session, snapshot: SettingsSnapshot, *, now: datetime | None = None) -> int:
    """
    Solve PENDING tickets whose last comment is a staff reply older than the threshold.

    Resolved emails are not sent for automated solves. A solved PROBLEM
    still cascades to its incidents.
    """
    if not snapshot.auto_solve_enabled:
        return 0

    now = now or utc_now()
    hours = snapshot.auto_solve_hours
    cutoff = now - timedelta(hours=hours)

    solved = 0
    pending = db.query(Ticket).filter(Ticket.status == TicketStatus.PENDING).all()
    for ticket in pending:
        row = _last_human_comment(db, ticket.id)
        if row is None:
            continue
        comment, author = row
        if as_utc(comment.created_at) > cutoff:
            continue
        if author.role not in STAFF_ROLES or author.id == ticket.requester_id:
            continue

        transition = status_transition(ticket, TicketStatus.SOLVED, now=now, rule="auto_solve")
        transition.action = TicketActivityAction.TICKET_AUTO_SOLVED
        transition.details = {
            "reason": "auto_solve",
            "hours_without_user_reply": hours,
            "solved_at": now.isoformat(),
        }
        try:
            effects = apply_transitions(db, ticket, [transition], actor_id=None)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Auto-solve failed for ticket #%s", ticket.ticket_number)
            continue
        solved += 1
        for problem_id in effects.solved_problem_ids:
            merge_service.cascade_problem_resolution(db, problem_id, actor_id=None)

    if solved:
        logger.info("Auto-solved %s pending tickets (threshold %sh)", solved, hours)
    return solved


def run_auto_close(db: Session, snapshot: SettingsSnapshot, *, now: datetime | None = None) -> int:
    """Close SOLVED tickets whose solved_at is older than the threshold (one transaction)."""
    if not snapshot.auto_close_enabled:
        return 0

    now = now or utc_now()
    hours = snapshot.auto_close_hours
    cutoff = now - timedelta(hours=hours)

    ticket_ids = [
        row.id
        for row in db.query(Ticket.id)
        .filter(Ticket.status == TicketStatus.SOLVED, Ticket.solved_at <= cutoff)
        .all()
    ]
    if not ticket_ids:
        return 0

    try:
        db.query(Ticket).filter(Ticket.id.in_(ticket_ids)).update(
            {Ticket.status: TicketStatus.CLOSED, Ticket.closed_at: now, Ticket.updated_at: now},
            synchronize_session=False,
        )
        for ticket_id in ticket_ids:
            log_activity(
                db,
                ticket_id,
                TicketActivityAction.TICKET_AUTO_CLOSED,
                user_id=None,
                details={
                    "reason": "auto_close",
                    "hours_after_solved": hours,
                    "closed_at": now.isoformat(),
                },
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Auto-closed %s solved tickets (threshold %sh)", len(ticket_ids), hours)
    return len(ticket_ids)


def run_ticket_automation(db: Session, *, now: datetime | None = None) -> AutomationReport:
    """
    Hourly run: auto-solve, then auto-close, then notification cleanup.

    Each task is isolated; a failure is recorded in ``errors`` and the
    remaining tasks still run.
    """
    now = now or utc_now()
    snapshot = settings_service.get_settings_snapshot(db)
    report = AutomationReport()

    tasks = (
        ("auto_solve", "auto_solved", lambda: run_auto_solve(db, snapshot, now=now)),
        ("auto_close", "auto_closed", lambda: run_auto_close(db, snapshot, now=now)),
        (
            "notification_cleanup",
            "notifications_deleted",
            lambda: notification_service.cleanup_old_notifications(db, now=now),
        ),
    )
    for name, attr, task in tasks:
        try:
            setattr(report, attr, task())
        except Exception as exc:
            db.rollback()
            logger.exception("Ticket automation task %s failed", name)
            report.errors[name] = str(exc) or exc.__class__.__name__

    return report


def count_backlog(db: Session) -> dict[TicketStatus, int]:
    rows = (
        db.query(Ticket.status, func.count(Ticket.id))
        .filter(Ticket.status.in_(list(BACKLOG_STATUSES)))
        .group_by(Ticket.status)
        .all()
    )
    counts = {status: 0 for status in BACKLOG_STATUSES}
    for status, count in rows:
        counts[TicketStatus(status)] = count
    return counts


def capture_backlog_snapshot(db: Session, *, now: datetime | None = None) -> BacklogSnapshot:
    """Upsert today's (UTC) unresolved-ticket counts; re-running the same day updates the row."""
    snapshot_date = utc_date_key(now)
    counts = count_backlog(db)
    values = {
        "new_count": counts[TicketStatus.NEW],
        "open_count": counts[TicketStatus.OPEN],
        "pending_count": counts[TicketStatus.PENDING],
        "hold_count": counts[TicketStatus.ON_HOLD],
        "total_count": sum(counts.values()),
    }

    def _apply() -> BacklogSnapshot:
        row = db.query(BacklogSnapshot).filter(BacklogSnapshot.snapshot_date == snapshot_date).first()
        if row is None:
            row = BacklogSnapshot(snapshot_date=snapshot_date, **values)
            db.add(row)
        else:
            for key, value in values.items():
                setattr(row, key, value)
        db.commit()
        return row

    try:
        row = _apply()
    except IntegrityError:
        # A concurrent run inserted today's row first
        db.rollback()
        row = _apply()

    db.refresh(row)
    logger.info("Backlog snapshot for %s: %s open tickets", snapshot_date.isoformat(), values["total_count"])
    return row
