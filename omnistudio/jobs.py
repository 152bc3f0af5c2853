"""
Generation job polling: start a job and poll its status until it resolves.

Fire-and-poll only: there is no retry with backoff and no cancellation.
Terminal states are ``completed`` (first result URL is returned),
``failed`` and ``cancelled`` (raised as ``JobFailed``).
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from .client import StudioClient
from .config import settings
from .errors import JobFailed, JobResultMissing, JobTimeout
from .models import Job, JobResult

logger = logging.getLogger("omnistudio.jobs")

KIND_LABELS: Dict[str, str] = {
    "images": "Image",
    "videos": "Video",
    "avatars": "Avatar",
}


def _label(kind: str, label: Optional[str]) -> str:
    return label or KIND_LABELS.get(kind, "Job")


def failure_message(job: Job, label: str) -> str:
    """Provider message with its code appended, or a generic fallback."""
    text = job.error.describe() if job.error else None
    if text:
        return text
    if job.status == "cancelled":
        return f"{label} generation was cancelled"
    return f"{label} generation failed"


async def wait_for_job(
    client: StudioClient,
    kind: str,
    job_id: str,
    *,
    timeout_s: Optional[float] = None,
    poll_interval_s: Optional[float] = None,
    label: Optional[str] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Job:
    """
    Poll ``/api/{kind}/job/{job_id}`` until the job completes.

    The status is requested immediately, then every ``poll_interval_s``
    seconds. A non-2xx status response propagates as ``StudioAPIError``.

    Raises:
        JobFailed: The job failed or was cancelled
        JobTimeout: No terminal state within ``timeout_s``
    """
    timeout_s = settings.JOB_TIMEOUT_S if timeout_s is None else timeout_s
    poll_interval_s = settings.JOB_POLL_INTERVAL_S if poll_interval_s is None else poll_interval_s
    label = _label(kind, label)

    start = clock()
    while True:
        job = await client.get_job(kind, job_id)
        if job.status == "completed":
            logger.info("%s job %s completed", label, job_id)
            return job
        if job.status in ("failed", "cancelled"):
            message = failure_message(job, label)
            logger.warning("%s job %s %s: %s", label, job_id, job.status, message)
            raise JobFailed(message, code=job.error.code if job.error else None)
        if clock() - start > timeout_s:
            logger.warning("%s job %s timed out after %.0fs", label, job_id, timeout_s)
            raise JobTimeout(f"{label} generation timed out")
        logger.debug("%s job %s is %s", label, job_id, job.status)
        await sleep(poll_interval_s)


def first_result(job: Job, label: str) -> JobResult:
    result = job.first_result()
    if result is None or not result.url:
        raise JobResultMissing(f"No {label.lower()} URL in job result")
    return result


async def run_job(
    client: StudioClient,
    kind: str,
    payload: Dict[str, Any],
    *,
    label: Optional[str] = None,
    **poll_kwargs: Any,
) -> Tuple[str, JobResult]:
    """
    Start a job, wait for it and return ``(job_id, first_result)``.

    ``poll_kwargs`` are passed to :func:`wait_for_job`.
    """
    label = _label(kind, label)
    job_id = await client.start_job(kind, payload)
    logger.info("Started %s job %s", label.lower(), job_id)
    job = await wait_for_job(client, kind, job_id, label=label, **poll_kwargs)
    return job_id, first_result(job, label)
