"""
Background worker for processing queued jobs.

Usage:
    python -m ficsync.worker

The worker polls for due jobs, claims them and runs them in a bounded number
of concurrent slots, each with its own database session. Run it as a
separate process from the API (systemd service, container, ...).

Slots are coroutines on one event loop. FIC calls are awaited and overlap,
but SQLAlchemy sessions are synchronous: a commit blocks the loop, and the
job timeout and the slot limit only take effect at await points. A job stuck
inside a blocking DB call is not interrupted by the timeout; the claim lease
hands it to another worker once it expires. Scale DB-heavy load with more
worker processes rather than more slots.
"""

import asyncio
import logging

from ficsync.core.config import settings
from ficsync.core.structured_logging import build_log_context
from ficsync.db.session import SessionLocal
from ficsync.jobs.registry import resolve_job_handler
from ficsync.services import job_service
from ficsync.services.job_service import RetryPolicy

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = settings.WORKER_POLL_INTERVAL
BATCH_SIZE = settings.WORKER_BATCH_SIZE
CONCURRENCY = max(settings.WORKER_CONCURRENCY, 1)


async def process_job(db, job, policy: RetryPolicy) -> None:
    """Run the job's handler under the policy timeout."""
    logger.info(
        "Processing job %s (type=%s, attempt=%s)",
        job.id,
        job.job_type,
        job.attempts,
        extra=build_log_context(job_id=job.id, account_id=job.account_id),
    )
    handler = resolve_job_handler(job.job_type)
    await asyncio.wait_for(handler(db, job), timeout=policy.timeout_seconds)


async def run_job(job_id: int, policy: RetryPolicy, session_factory=SessionLocal) -> None:
    """Execute one claimed job and record its outcome. Never raises."""
    with session_factory() as db:
        job = job_service.get_job(db, job_id)
        if job is None:
            logger.warning("Claimed job %s disappeared", job_id)
            return
        try:
            await process_job(db, job, policy)
        except asyncio.TimeoutError:
            db.rollback()
            job_service.mark_job_failed(
                db, job, f"Job timed out after {policy.timeout_seconds:g}s", policy
            )
            logger.error("Job %s timed out", job.id)
        except Exception as e:
            db.rollback()
            job_service.mark_job_failed(db, job, f"{type(e).__name__}: {e}", policy)
            logger.error("Job %s failed: %s", job.id, type(e).__name__)
        else:
            job_service.mark_job_completed(db, job)
            logger.info("Job %s completed successfully", job.id)


async def run_once(
    session_factory=SessionLocal,
    policy: RetryPolicy | None = None,
    batch_size: int = BATCH_SIZE,
    concurrency: int = CONCURRENCY,
) -> int:
    """Claim one batch of due jobs and run it. Returns the number claimed."""
    policy = policy or RetryPolicy.from_settings(settings)
    with session_factory() as db:
        reclaimed = job_service.reclaim_abandoned_jobs(db, policy)
        if reclaimed:
            logger.warning("Reclaimed %s abandoned jobs", reclaimed)
        job_ids = [
            job.id
            for job in job_service.claim_pending_jobs(db, limit=batch_size, lease=policy.lease)
        ]

    if not job_ids:
        return 0
    logger.info("Claimed %s pending jobs", len(job_ids))

    slots = asyncio.Semaphore(max(concurrency, 1))

    async def _run(job_id: int) -> None:
        async with slots:
            await run_job(job_id, policy, session_factory)

    await asyncio.gather(*(_run(job_id) for job_id in job_ids))
    return len(job_ids)


async def worker_loop() -> None:
    """Main worker loop - polls for and processes pending jobs."""
    policy = RetryPolicy.from_settings(settings)
    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s, concurrency: %s)",
        POLL_INTERVAL_SECONDS,
        BATCH_SIZE,
        CONCURRENCY,
    )

    while True:
        try:
            claimed = await run_once(policy=policy)
        except Exception as e:
            logger.error("Error in worker loop: %s", e)
            claimed = 0
        # Drain backlog without sleeping
        if claimed < BATCH_SIZE:
            await asyncio.sleep(POLL_INTERVAL_SECONDS)


def main() -> None:
    """Entry point for the worker."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception(
            "Worker crashed",
            extra=build_log_context(route="worker", method="background"),
        )
        raise


if __name__ == "__main__":
    main()
