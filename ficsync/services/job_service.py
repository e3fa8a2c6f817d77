"""Job service - durable queue scheduling, claiming and retry bookkeeping."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from ficsync.core.structured_logging import build_log_context
from ficsync.db.enums import JobStatus, JobType
from ficsync.db.models import Job
from ficsync.utils.datetime_parsing import now_utc

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and per-attempt delays (seconds)."""

    max_attempts: int = 3
    backoff_seconds: tuple[int, ...] = field(default=(60, 120, 240))
    timeout_seconds: float = 120.0
    # Extra time past the timeout before a running job counts as abandoned
    lease_margin_seconds: float = 60.0

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.JOB_MAX_ATTEMPTS,
            backoff_seconds=tuple(settings.job_backoff_list) or (60, 120, 240),
            timeout_seconds=settings.JOB_TIMEOUT_SECONDS,
        )

    @property
    def lease(self) -> timedelta:
        return timedelta(seconds=self.timeout_seconds + self.lease_margin_seconds)

    def backoff_for(self, attempts: int) -> timedelta:
        """Delay before the next try after ``attempts`` failed attempts."""
        index = min(max(attempts, 1), len(self.backoff_seconds)) - 1
        return timedelta(seconds=self.backoff_seconds[index])


def schedule_job(
    db: Session,
    job_type: JobType,
    payload: dict,
    account_id: int | None = None,
    run_at: datetime | None = None,
    idempotency_key: str | None = None,
    max_attempts: int = 3,
) -> Job:
    """
    Schedule a new background job.

    If run_at is None, the job runs immediately.
    If idempotency_key is provided, duplicate jobs with same key will fail
    with IntegrityError (caller should catch and handle).
    """
    job = Job(
        account_id=account_id,
        job_type=job_type.value,
        payload=payload,
        run_at=run_at or now_utc(),
        status=JobStatus.PENDING.value,
        attempts=0,
        max_attempts=max_attempts,
        idempotency_key=idempotency_key,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def _pending_query(now: datetime, job_types: list[JobType] | None):
    stmt = select(Job).where(Job.status == JobStatus.PENDING.value, Job.run_at <= now)
    if job_types:
        stmt = stmt.where(Job.job_type.in_([jt.value for jt in job_types]))
    return stmt.order_by(Job.run_at, Job.id)


def claim_pending_jobs(
    db: Session,
    limit: int = 10,
    job_types: list[JobType] | None = None,
    lease: timedelta | None = None,
) -> list[Job]:
    """
    Atomically claim due jobs: mark them running, count the attempt and
    take a lease that expires at now + lease.

    On PostgreSQL rows are locked with FOR UPDATE SKIP LOCKED so concurrent
    workers never claim the same job.
    """
    now = now_utc()
    lease = lease or RetryPolicy().lease
    stmt = _pending_query(now, job_types).limit(limit)
    if db.get_bind().dialect.name == "postgresql":
        stmt = stmt.with_for_update(skip_locked=True)

    jobs = list(db.scalars(stmt))
    for job in jobs:
        job.status = JobStatus.RUNNING.value
        job.attempts += 1
        job.locked_until = now + lease
    db.commit()
    return jobs


def reclaim_abandoned_jobs(db: Session, policy: RetryPolicy | None = None) -> int:
    """
    Fail running jobs whose lease has expired.

    Their worker died mid-run; the attempt already counted at claim time,
    so they go through the usual retry or dead-letter path.
    """
    policy = policy or RetryPolicy()
    stmt = select(Job).where(
        Job.status == JobStatus.RUNNING.value,
        Job.locked_until.is_not(None),
        Job.locked_until < now_utc(),
    )
    if db.get_bind().dialect.name == "postgresql":
        stmt = stmt.with_for_update(skip_locked=True)

    jobs = list(db.scalars(stmt))
    for job in jobs:
        logger.warning(
            "Job %s lease expired while running; reclaiming",
            job.id,
            extra=build_log_context(job_id=job.id, account_id=job.account_id),
        )
        mark_job_failed(db, job, "Worker lease expired before the job finished", policy)
    return len(jobs)


def get_job(db: Session, job_id: int) -> Job | None:
    return db.get(Job, job_id)


def list_jobs(
    db: Session,
    account_id: int | None = None,
    status: JobStatus | None = None,
    job_type: JobType | None = None,
    limit: int = 50,
) -> list[Job]:
    """List jobs with optional filters, newest first."""
    stmt = select(Job)
    if account_id is not None:
        stmt = stmt.where(Job.account_id == account_id)
    if status:
        stmt = stmt.where(Job.status == status.value)
    if job_type:
        stmt = stmt.where(Job.job_type == job_type.value)
    return list(db.scalars(stmt.order_by(Job.created_at.desc(), Job.id.desc()).limit(limit)))


def mark_job_completed(db: Session, job: Job) -> Job:
    """Mark a job as completed."""
    job.status = JobStatus.COMPLETED.value
    job.completed_at = now_utc()
    job.locked_until = None
    job.last_error = None
    db.commit()
    db.refresh(job)
    return job


def mark_job_failed(
    db: Session, job: Job, error: str, policy: RetryPolicy | None = None
) -> Job:
    """
    Record a failed attempt.

    With attempts remaining the job returns to pending with
    run_at = now + backoff(attempts). Otherwise it is dead-lettered:
    status 'failed', failed_at set, and an error log with full context.
    """
    policy = policy or RetryPolicy(max_attempts=job.max_attempts)
    job.last_error = error[:MAX_ERROR_LENGTH]
    job.locked_until = None
    if job.attempts < job.max_attempts:
        job.status = JobStatus.PENDING.value
        job.run_at = now_utc() + policy.backoff_for(job.attempts)
    else:
        job.status = JobStatus.FAILED.value
        job.failed_at = now_utc()
    db.commit()
    db.refresh(job)

    if job.status == JobStatus.FAILED.value:
        payload = job.payload or {}
        envelope = payload.get("envelope") or {}
        logger.error(
            "Job %s dead-lettered after %s attempts: %s",
            job.id,
            job.attempts,
            job.last_error,
            extra={
                **build_log_context(
                    job_id=job.id,
                    account_id=job.account_id,
                    event_group=payload.get("event_group"),
                    event_type=envelope.get("event_type"),
                ),
                "attempts": job.attempts,
                "error": job.last_error,
            },
        )
    return job


def retry_failed_jobs(db: Session, job_type: JobType | None = None) -> int:
    """Requeue dead-lettered jobs with a fresh attempt budget."""
    stmt = select(Job).where(Job.status == JobStatus.FAILED.value)
    if job_type:
        stmt = stmt.where(Job.job_type == job_type.value)
    jobs = list(db.scalars(stmt))
    now = now_utc()
    for job in jobs:
        job.status = JobStatus.PENDING.value
        job.attempts = 0
        job.run_at = now
        job.failed_at = None
    db.commit()
    return len(jobs)
