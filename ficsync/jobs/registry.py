"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from ficsync.db.enums import JobType
from ficsync.jobs.handlers import fic

JobHandler = Callable[[object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.FIC_WEBHOOK.value: fic.process_fic_webhook,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
