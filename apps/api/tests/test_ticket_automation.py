"""Tests for auto-solve, auto-close, notification cleanup and backlog snapshots."""

from datetime import date, datetime, timedelta, timezone

import pytest

from app.db.enums import NotificationType, TicketActivityAction, TicketStatus
from app.db.models import BacklogSnapshot, Notification, TicketActivity
from app.schemas.settings import SettingsPatch
from app.services import (
    job_service,
    settings_service,
    ticket_automation_service,
    ticket_service,
)
from app.services.ticket_lifecycle_service import TicketUpdateCommand
from app.utils.datetimes import utc_now


@pytest.fixture
def enable_automation(db):
    settings_service.update_app_settings(
        db,
        SettingsPatch(
            auto_solve_enabled=True,
            auto_solve_hours=72,
            auto_close_enabled=True,
            auto_close_hours=48,
        ),
    )


def _reply(db, ticket, user, session_for, body="Reply"):
    return ticket_service.add_comment(
        db,
        ticket_id=ticket.id,
        session=session_for(user),
        snapshot=settings_service.get_settings_snapshot(db),
        body=body,
    )


def _set_status(db, ticket, actor, status):
    return ticket_service.patch_ticket(
        db, ticket_id=ticket.id, command=TicketUpdateCommand(status=status), actor_id=actor.id
    )


def _actions(db, ticket_id) -> list[str]:
    return [
        row.action
        for row in db.query(TicketActivity).filter(TicketActivity.ticket_id == ticket_id).all()
    ]


# =============================================================================
# Auto-solve
# =============================================================================


def test_auto_solve_pending_ticket_after_staff_reply(db, enable_automation, make_ticket, agent, session_for):
    ticket = make_ticket()
    _reply(db, ticket, agent, session_for)
    assert ticket.status == TicketStatus.PENDING
    jobs_before = len(job_service.list_jobs_for_ticket(db, ticket.id))

    report = ticket_automation_service.run_ticket_automation(db, now=utc_now() + timedelta(hours=73))

    assert report.auto_solved == 1
    assert report.errors == {}
    db.refresh(ticket)
    assert ticket.status == TicketStatus.SOLVED
    assert ticket.solved_at is not None
    assert TicketActivityAction.TICKET_AUTO_SOLVED.value in _actions(db, ticket.id)
    # Automated solves send no resolved or feedback email
    assert len(job_service.list_jobs_for_ticket(db, ticket.id)) == jobs_before


def test_auto_solve_respects_threshold(db, enable_automation, make_ticket, agent, session_for):
    ticket = make_ticket()
    _reply(db, ticket, agent, session_for)

    report = ticket_automation_service.run_ticket_automation(db, now=utc_now() + timedelta(hours=10))

    assert report.auto_solved == 0
    db.refresh(ticket)
    assert ticket.status == TicketStatus.PENDING


def test_auto_solve_skips_when_customer_replied_last(
    db, enable_automation, make_ticket, agent, customer, session_for
):
    ticket = make_ticket()
    _reply(db, ticket, agent, session_for)
    _reply(db, ticket, customer, session_for, body="Here are the logs")
    # Customer reply reopened it; put it back to PENDING without a staff reply
    _set_status(db, ticket, agent, "PENDING")

    report = ticket_automation_service.run_ticket_automation(db, now=utc_now() + timedelta(hours=100))

    assert report.auto_solved == 0


def test_auto_solve_disabled_by_default(db, make_ticket, agent, session_for):
    ticket = make_ticket()
    _reply(db, ticket, agent, session_for)

    report = ticket_automation_service.run_ticket_automation(db, now=utc_now() + timedelta(days=30))

    assert report.auto_solved == 0
    assert report.auto_closed == 0


def test_auto_solve_of_problem_cascades(db, enable_automation, make_ticket, agent, session_for):
    problem = make_ticket(subject="Outage")
    incident = make_ticket(subject="Site down")
    ticket_service.patch_ticket(
        db, ticket_id=problem.id, command=TicketUpdateCommand(type="PROBLEM"), actor_id=agent.id
    )
    ticket_service.patch_ticket(
        db, ticket_id=incident.id, command=TicketUpdateCommand(problem_id=problem.id), actor_id=agent.id
    )
    _reply(db, problem, agent, session_for, body="Fixed upstream")

    solved = ticket_automation_service.run_auto_solve(
        db, settings_service.get_settings_snapshot(db), now=utc_now() + timedelta(hours=80)
    )

    assert solved == 1
    db.refresh(incident)
    assert incident.status == TicketStatus.SOLVED


# =============================================================================
# Auto-close
# =============================================================================


def test_auto_close_solved_tickets_after_threshold(db, enable_automation, make_ticket, agent):
    old = make_ticket(subject="Old")
    _set_status(db, old, agent, "SOLVED")

    report = ticket_automation_service.run_ticket_automation(db, now=utc_now() + timedelta(hours=49))

    assert report.auto_closed == 1
    db.refresh(old)
    assert old.status == TicketStatus.CLOSED
    assert old.closed_at is not None
    assert TicketActivityAction.TICKET_AUTO_CLOSED.value in _actions(db, old.id)


def test_auto_close_leaves_recent_solves(db, enable_automation, make_ticket, agent):
    ticket = make_ticket()
    _set_status(db, ticket, agent, "SOLVED")

    report = ticket_automation_service.run_ticket_automation(db, now=utc_now() + timedelta(hours=2))

    assert report.auto_closed == 0
    db.refresh(ticket)
    assert ticket.status == TicketStatus.SOLVED


def test_automation_is_idempotent(db, enable_automation, make_ticket, agent):
    ticket = make_ticket()
    _set_status(db, ticket, agent, "SOLVED")
    later = utc_now() + timedelta(hours=49)

    first = ticket_automation_service.run_ticket_automation(db, now=later)
    second = ticket_automation_service.run_ticket_automation(db, now=later)

    assert first.auto_closed == 1
    assert second.auto_closed == 0


# =============================================================================
# Notification cleanup
# =============================================================================


def test_cleanup_deletes_only_old_read_notifications(db, agent):
    now = utc_now()
    db.add_all(
        [
            Notification(
                user_id=agent.id,
                type=NotificationType.MENTION,
                title="old read",
                message="x",
                is_read=True,
                read_at=now - timedelta(days=6),
            ),
            Notification(
                user_id=agent.id,
                type=NotificationType.MENTION,
                title="recent read",
                message="x",
                is_read=True,
                read_at=now - timedelta(days=1),
            ),
            Notification(
                user_id=agent.id,
                type=NotificationType.MENTION,
                title="old unread",
                message="x",
                created_at=now - timedelta(days=30),
            ),
        ]
    )
    db.commit()

    report = ticket_automation_service.run_ticket_automation(db, now=now)

    assert report.notifications_deleted == 1
    assert sorted(n.title for n in db.query(Notification).all()) == ["old unread", "recent read"]


def test_failing_task_is_reported_and_others_still_run(db, enable_automation, make_ticket, agent, monkeypatch):
    ticket = make_ticket()
    _set_status(db, ticket, agent, "SOLVED")

    def boom(*args, **kwargs):
        raise RuntimeError("solver exploded")

    monkeypatch.setattr(ticket_automation_service, "run_auto_solve", boom)

    report = ticket_automation_service.run_ticket_automation(db, now=utc_now() + timedelta(hours=49))

    assert report.errors == {"auto_solve": "solver exploded"}
    assert report.auto_closed == 1


# =============================================================================
# Backlog snapshots
# =============================================================================


def test_backlog_snapshot_counts_unresolved_tickets(db, make_ticket, agent):
    first = make_ticket()
    second = make_ticket()
    third = make_ticket()
    _set_status(db, second, agent, "ON_HOLD")
    _set_status(db, third, agent, "SOLVED")
    assert first.status == TicketStatus.NEW

    now = datetime(2026, 10, 15, 23, 30, tzinfo=timezone.utc)
    row = ticket_automation_service.capture_backlog_snapshot(db, now=now)

    assert row.snapshot_date == date(2026, 10, 15)
    assert (row.new_count, row.open_count, row.pending_count, row.hold_count) == (1, 0, 0, 1)
    assert row.total_count == 2


def test_backlog_snapshot_same_day_updates_row(db, make_ticket, agent):
    ticket = make_ticket()
    now = datetime(2026, 10, 15, 8, 0, tzinfo=timezone.utc)
    ticket_automation_service.capture_backlog_snapshot(db, now=now)

    _set_status(db, ticket, agent, "OPEN")
    row = ticket_automation_service.capture_backlog_snapshot(db, now=now + timedelta(hours=4))

    assert db.query(BacklogSnapshot).count() == 1
    assert (row.new_count, row.open_count) == (0, 1)


# =============================================================================
# Scheduled endpoints
# =============================================================================


@pytest.mark.asyncio
async def test_scheduled_endpoints_require_internal_secret(client):
    missing = await client.post("/internal/scheduled/ticket-automation")
    wrong = await client.post(
        "/internal/scheduled/ticket-automation", headers={"X-Internal-Secret": "nope"}
    )
    assert missing.status_code == 403
    assert wrong.status_code == 403


@pytest.mark.asyncio
async def test_scheduled_ticket_automation(client):
    response = await client.post(
        "/internal/scheduled/ticket-automation",
        headers={"X-Internal-Secret": "test-internal-secret"},
    )
    assert response.status_code == 200
    assert response.json() == {
        "auto_solved": 0,
        "auto_closed": 0,
        "notifications_deleted": 0,
        "errors": {},
    }


@pytest.mark.asyncio
async def test_scheduled_backlog_snapshot(client, make_ticket):
    make_ticket()
    response = await client.post(
        "/internal/scheduled/backlog-snapshot",
        headers={"X-Internal-Secret": "test-internal-secret"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["new_count"] == 1
    assert data["total_count"] == 1
