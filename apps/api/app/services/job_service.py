"""Job service - the outbound email queue behind the worker.

Jobs are rows in ``jobs``. Ticket code only ever schedules them (after its own
transaction commits); ``app.worker`` claims due rows and records the outcome.
"""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.enums import JobStatus, JobType
from app.db.models import Job
from app.utils.datetimes import utc_now


def schedule_job(
    db: Session,
    job_type: JobType,
    payload: dict,
    run_at: datetime | None = None,
    idempotency_key: str | None = None,
) -> Job:
    """
    Insert a pending job (due immediately unless ``run_at`` is given).

    A repeated ``idempotency_key`` raises ``IntegrityError``; callers that
    queue lifecycle emails treat that as "already queued".
    """
    job = Job(
        job_type=job_type.value,
        payload=payload,
        run_at=run_at or utc_now(),
        status=JobStatus.PENDING.value,
        idempotency_key=idempotency_key,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def get_pending_jobs(db: Session, limit: int = 10, *, now: datetime | None = None) -> list[Job]:
    """Due pending jobs, oldest first."""
    return (
        db.query(Job)
        .filter(
            Job.status == JobStatus.PENDING.value,
            Job.run_at <= (now or utc_now()),
        )
        .order_by(Job.run_at, Job.created_at)
        .limit(limit)
        .all()
    )


def list_jobs_for_ticket(db: Session, ticket_id: UUID) -> list[Job]:
    """Jobs whose payload references ``ticket_id``, in creation order."""
    return (
        db.query(Job)
        .filter(Job.payload["ticket_id"].as_string() == str(ticket_id))
        .order_by(Job.created_at)
        .all()
    )


def list_failed_jobs(db: Session, limit: int = 50) -> list[Job]:
    """Jobs that exhausted their attempts, newest first."""
    return (
        db.query(Job)
        .filter(Job.status == JobStatus.FAILED.value)
        .order_by(Job.created_at.desc())
        .limit(limit)
        .all()
    )


def retry_delay(attempts: int) -> timedelta:
    """Exponential backoff after the ``attempts``-th failure, capped."""
    seconds = settings.JOB_RETRY_BASE_DELAY_SECONDS * (2 ** max(attempts - 1, 0))
    return timedelta(seconds=min(seconds, settings.JOB_RETRY_MAX_DELAY_SECONDS))


def mark_job_running(db: Session, job: Job) -> Job:
    """Claim the job; each claim counts as one attempt."""
    job.status = JobStatus.RUNNING.value
    job.attempts += 1
    db.commit()
    db.refresh(job)
    return job


def mark_job_completed(db: Session, job: Job) -> Job:
    job.status = JobStatus.COMPLETED.value
    job.completed_at = utc_now()
    job.last_error = None
    db.commit()
    db.refresh(job)
    return job


def mark_job_failed(db: Session, job: Job, error: str) -> Job:
    """
    Record a failed attempt.

    The job goes back to pending with a backoff delay until ``max_attempts``
    is reached, then stays failed.
    """
    job.last_error = error[:2000]
    if job.attempts < job.max_attempts:
        job.status = JobStatus.PENDING.value
        job.run_at = utc_now() + retry_delay(job.attempts)
    else:
        job.status = JobStatus.FAILED.value
    db.commit()
    db.refresh(job)
    return job
