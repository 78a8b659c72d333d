"""CLI tools for helpdesk administration."""

import json

import click

from app.db.enums import Role
from app.db.session import SessionLocal


@click.group()
def cli():
    """Helpdesk CLI tools."""
    pass


@cli.command()
def run_automation():
    """
    Run the hourly ticket automation once (auto-solve, auto-close, cleanup).

    Example:
        python -m app.cli run-automation
    """
    from app.services import ticket_automation_service

    db = SessionLocal()
    try:
        report = ticket_automation_service.run_ticket_automation(db)
        click.echo(json.dumps(report.to_dict(), indent=2))
        if report.errors:
            raise SystemExit(1)
    finally:
        db.close()


@cli.command()
def capture_snapshot():
    """Record today's backlog snapshot (safe to run more than once a day)."""
    from app.services import ticket_automation_service

    db = SessionLocal()
    try:
        row = ticket_automation_service.capture_backlog_snapshot(db)
        click.echo(f"✓ Backlog snapshot for {row.snapshot_date.isoformat()}: {row.total_count} unresolved")
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--limit", default=20, show_default=True, help="Maximum jobs to list")
def failed_jobs(limit: int):
    """List email jobs that ran out of retries."""
    from app.services import job_service

    db = SessionLocal()
    try:
        jobs = job_service.list_failed_jobs(db, limit=limit)
        if not jobs:
            click.echo("✓ No failed jobs")
            return
        for job in jobs:
            payload = job.payload or {}
            click.echo(
                f"{job.id}  {payload.get('event', job.job_type)}  ticket={payload.get('ticket_id')}  "
                f"attempts={job.attempts}  error={job.last_error}"
            )
    finally:
        db.close()


@cli.command()
@click.option("--name", required=True, help="Label for the key (e.g. partner name)")
@click.option("--form-id", default=None, help="Optional form the key is restricted to")
def create_api_key(name: str, form_id: str | None):
    """
    Create a partner API key. The raw key is printed once.

    Example:
        python -m app.cli create-api-key --name "Acme integration"
    """
    from uuid import UUID

    from app.services import api_key_service

    db = SessionLocal()
    try:
        api_key, raw_key = api_key_service.create_api_key(
            db, name=name, form_id=UUID(form_id) if form_id else None
        )
        click.echo(f"✓ Created API key: {api_key.name}")
        click.echo(f"  ID: {api_key.id}")
        click.echo(f"  Key: {raw_key}")
        click.echo("→ Store it now; it cannot be shown again")
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
def seed_email_templates():
    """Install the default ticket email templates (existing ones are kept)."""
    from app.services import email_service

    db = SessionLocal()
    try:
        created = email_service.seed_default_templates(db)
        click.echo(f"✓ Seeded {created} email templates")
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--email", required=True, help="User email")
@click.option("--name", default=None, help="Display name")
@click.option(
    "--role",
    type=click.Choice([r.value for r in Role], case_sensitive=False),
    default=Role.AGENT.value,
    show_default=True,
)
def create_user(email: str, name: str | None, role: str):
    """
    Create a user or change the role of an existing one.

    Example:
        python -m app.cli create-user --email "agent@example.com" --role ADMIN
    """
    from app.services import user_service

    db = SessionLocal()
    try:
        user = user_service.find_or_create_customer(db, email=email, display_name=name)
        user.role = Role(role.upper())
        db.commit()
        click.echo(f"✓ {user.email} is now {user.role.value}")
        click.echo(f"  ID: {user.id}")
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


if __name__ == "__main__":
    cli()
