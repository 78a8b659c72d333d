"""Tests for ticket merge and the problem -> incident cascade."""

import uuid

import pytest
from fastapi import HTTPException

from app.db.enums import Role, TicketActivityAction, TicketStatus, TicketType
from app.db.models import Comment, TicketActivity
from app.services import job_service, merge_service, settings_service, ticket_service
from app.services.ticket_lifecycle_service import TicketUpdateCommand


def _comments(db, ticket_id) -> list[Comment]:
    return (
        db.query(Comment)
        .filter(Comment.ticket_id == ticket_id)
        .order_by(Comment.created_at, Comment.id)
        .all()
    )


def _patch(db, ticket, actor, **fields):
    return ticket_service.patch_ticket(
        db,
        ticket_id=ticket.id,
        command=TicketUpdateCommand.from_fields(fields),
        actor_id=actor.id,
    )


# =============================================================================
# Merge
# =============================================================================


def test_merge_closes_sources_into_target(db, make_ticket, agent, session_for):
    target = make_ticket(subject="Printer broken")
    first = make_ticket(subject="Printer still broken")
    second = make_ticket(subject="PRINTER!!!")

    outcome = merge_service.merge_tickets(
        db,
        target_id=target.id,
        source_ids=[second.id, first.id],
        session=session_for(agent),
        note="Same printer",
    )

    assert outcome.merged_ticket_numbers == [first.ticket_number, second.ticket_number]
    assert outcome.cross_requester is False

    for source in (first, second):
        db.refresh(source)
        assert source.status == TicketStatus.CLOSED
        assert source.merged_into_id == target.id
        assert source.merged_at is not None
        assert source.closed_at is not None
        note = _comments(db, source.id)[-1]
        assert note.is_system is True
        assert note.is_internal is False
        assert note.body_plain == f"This ticket has been merged into Ticket #{target.ticket_number}."

    target_note = _comments(db, target.id)[-1]
    assert target_note.is_internal is True
    assert target_note.body_plain.startswith("Same printer")
    assert f"#{first.ticket_number}, #{second.ticket_number}" in target_note.body_plain

    merged_in = (
        db.query(TicketActivity)
        .filter(
            TicketActivity.ticket_id == target.id,
            TicketActivity.action == TicketActivityAction.TICKETS_MERGED_IN.value,
        )
        .one()
    )
    assert merged_in.details["merged_ticket_numbers"] == outcome.merged_ticket_numbers


def test_merge_without_note_uses_default_text(db, make_ticket, agent, session_for):
    target = make_ticket()
    source = make_ticket()

    merge_service.merge_tickets(db, target_id=target.id, source_ids=[source.id], session=session_for(agent))

    assert _comments(db, target.id)[-1].body_plain == (
        f"The following tickets have been merged into this ticket: #{source.ticket_number}"
    )


def test_merge_into_itself_is_rejected(db, make_ticket, agent, session_for):
    ticket = make_ticket()
    with pytest.raises(HTTPException) as exc:
        merge_service.merge_tickets(db, target_id=ticket.id, source_ids=[ticket.id], session=session_for(agent))
    assert exc.value.detail["reason"] == "self_merge"


def test_merge_with_missing_tickets(db, make_ticket, agent, session_for):
    ticket = make_ticket()
    with pytest.raises(HTTPException) as exc:
        merge_service.merge_tickets(
            db, target_id=uuid.uuid4(), source_ids=[ticket.id], session=session_for(agent)
        )
    assert exc.value.detail["reason"] == "target_not_found"

    missing = uuid.uuid4()
    with pytest.raises(HTTPException) as exc:
        merge_service.merge_tickets(db, target_id=ticket.id, source_ids=[missing], session=session_for(agent))
    assert exc.value.status_code == 404
    assert exc.value.detail["missing_ticket_ids"] == [str(missing)]


def test_merge_into_solved_target_is_rejected(db, make_ticket, agent, session_for):
    target = make_ticket()
    source = make_ticket()
    _patch(db, target, agent, status="SOLVED")

    with pytest.raises(HTTPException) as exc:
        merge_service.merge_tickets(db, target_id=target.id, source_ids=[source.id], session=session_for(agent))
    assert exc.value.detail["reason"] == "target_closed"


def test_merge_closed_source_lists_offenders_and_writes_nothing(db, make_ticket, agent, session_for):
    target = make_ticket()
    open_source = make_ticket()
    closed_source = make_ticket()
    _patch(db, closed_source, agent, status="CLOSED")

    with pytest.raises(HTTPException) as exc:
        merge_service.merge_tickets(
            db,
            target_id=target.id,
            source_ids=[open_source.id, closed_source.id],
            session=session_for(agent),
        )

    assert exc.value.detail["reason"] == "sources_closed"
    assert exc.value.detail["invalid_tickets"] == [closed_source.ticket_number]
    db.refresh(open_source)
    assert open_source.merged_into_id is None
    assert open_source.status == TicketStatus.NEW


def test_cross_requester_merge_needs_admin(db, make_ticket, make_user, agent, admin, session_for):
    other = make_user(Role.USER, email="bob@example.com", name="Bob")
    target = make_ticket()
    source = make_ticket(requester=other)

    with pytest.raises(HTTPException) as exc:
        merge_service.merge_tickets(db, target_id=target.id, source_ids=[source.id], session=session_for(agent))
    assert exc.value.status_code == 403
    assert exc.value.detail["reason"] == "cross_requester_requires_admin"

    outcome = merge_service.merge_tickets(
        db, target_id=target.id, source_ids=[source.id], session=session_for(admin)
    )
    assert outcome.cross_requester is True
    assert any("Bob (bob@example.com)" in c.body_plain for c in _comments(db, target.id))


def test_merged_ticket_cannot_be_merged_again(db, make_ticket, agent, session_for):
    target = make_ticket()
    source = make_ticket()
    other = make_ticket()
    merge_service.merge_tickets(db, target_id=target.id, source_ids=[source.id], session=session_for(agent))

    with pytest.raises(HTTPException) as exc:
        merge_service.merge_tickets(db, target_id=other.id, source_ids=[source.id], session=session_for(agent))
    assert exc.value.detail["reason"] == "sources_closed"


def test_merge_candidates_are_open_tickets_of_same_requester(db, make_ticket, make_user, agent):
    other = make_user(Role.USER)
    ticket = make_ticket()
    sibling = make_ticket()
    solved = make_ticket()
    make_ticket(requester=other)
    _patch(db, solved, agent, status="SOLVED")

    candidates = merge_service.list_merge_candidates(db, ticket_id=ticket.id)

    assert [t.id for t in candidates] == [sibling.id]


# =============================================================================
# Problem / incident cascade
# =============================================================================


def _problem_with_incidents(db, make_ticket, agent, count=2):
    problem = make_ticket(subject="Email outage")
    _patch(db, problem, agent, type="PROBLEM")
    incidents = [make_ticket(subject=f"Cannot send mail {i}") for i in range(count)]
    for incident in incidents:
        _patch(db, incident, agent, problem_id=problem.id)
    return problem, incidents


def test_solving_problem_solves_linked_incidents(db, make_ticket, agent, session_for):
    problem, incidents = _problem_with_incidents(db, make_ticket, agent)
    ticket_service.add_comment(
        db,
        ticket_id=problem.id,
        session=session_for(agent),
        snapshot=settings_service.get_settings_snapshot(db),
        body="<p>Mail relay restarted</p>",
        body_plain="Mail relay restarted",
    )

    _patch(db, problem, agent, status="SOLVED")

    for incident in incidents:
        db.refresh(incident)
        assert incident.status == TicketStatus.SOLVED
        assert incident.solved_at is not None
        copied = _comments(db, incident.id)[-1]
        assert copied.is_system is True
        assert copied.body_plain == (
            f"Resolution copied from Problem Ticket #{problem.ticket_number}:\n\nMail relay restarted"
        )
        events = [job.payload["event"] for job in job_service.list_jobs_for_ticket(db, incident.id)]
        assert events[-2:] == ["ticket_resolved", "feedback_request"]
        activity = (
            db.query(TicketActivity)
            .filter(
                TicketActivity.ticket_id == incident.id,
                TicketActivity.action == TicketActivityAction.STATUS_CHANGED.value,
            )
            .order_by(TicketActivity.created_at.desc())
            .first()
        )
        assert activity.details["reason"] == "auto_solved_with_problem"


def test_cascade_skips_closed_incidents(db, make_ticket, agent):
    problem, (open_incident, closed_incident) = _problem_with_incidents(db, make_ticket, agent)
    _patch(db, closed_incident, agent, status="CLOSED")

    _patch(db, problem, agent, status="SOLVED")

    db.refresh(open_incident)
    db.refresh(closed_incident)
    assert open_incident.status == TicketStatus.SOLVED
    assert closed_incident.status == TicketStatus.CLOSED


def test_cascade_without_resolution_comment_still_solves(db, make_ticket, agent):
    problem, (incident,) = _problem_with_incidents(db, make_ticket, agent, count=1)
    # Nothing public on the problem to copy
    db.query(Comment).filter(Comment.ticket_id == problem.id).delete()
    db.commit()

    _patch(db, problem, agent, status="SOLVED")

    db.refresh(incident)
    assert incident.status == TicketStatus.SOLVED
    assert all(not c.is_system for c in _comments(db, incident.id))


def test_cascade_is_noop_for_unsolved_problem(db, make_ticket, agent):
    problem, _ = _problem_with_incidents(db, make_ticket, agent, count=1)
    assert merge_service.cascade_problem_resolution(db, problem.id, actor_id=agent.id) == 0


def test_search_problems_excludes_closed(db, make_ticket, agent):
    open_problem = make_ticket(subject="Login outage")
    closed_problem = make_ticket(subject="Login slowness")
    for ticket in (open_problem, closed_problem):
        _patch(db, ticket, agent, type="PROBLEM")
    _patch(db, closed_problem, agent, status="CLOSED")

    results = merge_service.search_problems(db, q="login")
    assert [t.id for t in results] == [open_problem.id]

    by_number = merge_service.search_problems(db, q=f"#{open_problem.ticket_number}")
    assert [t.id for t in by_number] == [open_problem.id]
    assert merge_service.search_problems(db, q="login", exclude_id=open_problem.id) == []
    assert all(t.type == TicketType.PROBLEM for t in merge_service.search_problems(db))
