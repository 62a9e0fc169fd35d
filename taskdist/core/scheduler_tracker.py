"""Execution history, failure counting, and dead-letter queue for scheduled work.

Tracks both the periodic distribution tick and each template processed within a
tick (job names ``template:{id}``), so a template that keeps failing is visible
on the health endpoint without blocking the others.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from taskdist.core.config import Constants
from taskdist.core.redis_client import RedisClient, redis_client


logger = logging.getLogger(__name__)


def template_job_name(template_id: str) -> str:
    """Job name under which a template's processing outcomes are tracked."""
    return f"template:{template_id}"


class JobTracker:
    """Track job execution history and health status."""

    def __init__(self, redis: RedisClient | None = None) -> None:
        self._redis = redis or redis_client
        # Fallback in-memory storage when Redis is unavailable
        self._memory_storage: dict[str, dict[str, Any]] = {}
        self._known_jobs: set[str] = set()
        self._dead_letter_queue: deque[tuple[str, str, str]] = deque(
            maxlen=Constants.TRACKER_DEAD_LETTER_QUEUE_MAXLEN
        )

    @staticmethod
    def _key(job_name: str, field: str) -> str:
        return f"scheduler:job:{job_name}:{field}"

    @property
    def known_jobs(self) -> list[str]:
        """Names of every job recorded by this process, sorted."""
        return sorted(self._known_jobs)

    async def record_job_start(self, job_name: str) -> None:
        """Record that a job began executing."""
        now = datetime.now(UTC).isoformat()
        self._known_jobs.add(job_name)

        if self._redis.is_available:
            await self._redis.set(self._key(job_name, "current_run"), now, ttl_seconds=3600)
        else:
            self._memory_storage.setdefault(job_name, {})["current_run"] = now

    async def record_job_success(self, job_name: str) -> None:
        """Record a successful execution and reset the consecutive failure count."""
        now = datetime.now(UTC).isoformat()
        ttl = Constants.TRACKER_TTL_SECONDS
        self._known_jobs.add(job_name)

        if self._redis.is_available:
            await self._redis.set(self._key(job_name, "last_success"), now, ttl_seconds=ttl)
            await self._redis.set(self._key(job_name, "consecutive_failures"), "0", ttl_seconds=ttl)
            await self._redis.increment(self._key(job_name, "success_count"))
            await self._redis.expire(self._key(job_name, "success_count"), ttl)
            await self._redis.delete(self._key(job_name, "current_run"))
            return

        job_data = self._memory_storage.setdefault(job_name, {})
        job_data["last_success"] = now
        job_data["consecutive_failures"] = 0
        job_data["success_count"] = job_data.get("success_count", 0) + 1
        job_data.pop("current_run", None)

    async def record_job_failure(self, job_name: str, error: str) -> int | None:
        """Record a failed execution.

        Returns:
            The consecutive failure count after this failure (None if Redis dropped the increment)
        """
        now = datetime.now(UTC).isoformat()
        ttl = Constants.TRACKER_TTL_SECONDS
        truncated = error[: Constants.TRACKER_ERROR_MAX_LENGTH]
        self._known_jobs.add(job_name)

        if self._redis.is_available:
            await self._redis.set(self._key(job_name, "last_failure"), now, ttl_seconds=ttl)
            await self._redis.set(self._key(job_name, "last_error"), truncated, ttl_seconds=ttl)

            consecutive_key = self._key(job_name, "consecutive_failures")
            consecutive_failures = await self._redis.increment(consecutive_key)
            await self._redis.expire(consecutive_key, ttl)

            await self._redis.increment(self._key(job_name, "failure_count"))
            await self._redis.expire(self._key(job_name, "failure_count"), ttl)
            await self._redis.delete(self._key(job_name, "current_run"))
            return consecutive_failures

        job_data = self._memory_storage.setdefault(job_name, {})
        job_data["last_failure"] = now
        job_data["last_error"] = truncated
        job_data["consecutive_failures"] = job_data.get("consecutive_failures", 0) + 1
        job_data["failure_count"] = job_data.get("failure_count", 0) + 1
        job_data.pop("current_run", None)
        return job_data["consecutive_failures"]

    async def get_job_status(self, job_name: str) -> dict[str, Any]:
        """Get execution status for a job."""
        if self._redis.is_available:
            fields = (
                "last_success",
                "last_failure",
                "last_error",
                "consecutive_failures",
                "success_count",
                "failure_count",
                "current_run",
            )
            job_data: dict[str, Any] = {}
            for field in fields:
                value = await self._redis.get(self._key(job_name, field))
                if value is not None:
                    job_data[field] = value
        else:
            job_data = self._memory_storage.get(job_name, {})

        return {
            "job_name": job_name,
            "last_success": job_data.get("last_success"),
            "last_failure": job_data.get("last_failure"),
            "last_error": job_data.get("last_error"),
            "consecutive_failures": int(job_data.get("consecutive_failures", 0)),
            "success_count": int(job_data.get("success_count", 0)),
            "failure_count": int(job_data.get("failure_count", 0)),
            "currently_running": "current_run" in job_data,
            "current_run_started": job_data.get("current_run"),
        }

    async def add_to_dead_letter_queue(self, job_name: str, error: str, context: str) -> None:
        """Add a persistently failing job to the dead-letter queue."""
        timestamp = datetime.now(UTC).isoformat()
        self._dead_letter_queue.append((job_name, error, context))

        logger.error(
            "Job added to dead letter queue",
            extra={"job_name": job_name, "error": error, "context": context, "timestamp": timestamp},
        )

        if self._redis.is_available:
            await self._redis.set(
                f"scheduler:dlq:{job_name}:{timestamp}",
                f"{error} | {context}",
                ttl_seconds=86400 * 30,
            )

    def get_dead_letter_queue(self) -> list[dict[str, str]]:
        """Get all items in the dead-letter queue."""
        return [
            {"job_name": job_name, "error": error, "context": context}
            for job_name, error, context in self._dead_letter_queue
        ]

    async def track_failure(self, job_name: str, error: str) -> int | None:
        """Record a failure and dead-letter the job once failures become persistent."""
        consecutive_failures = await self.record_job_failure(job_name, error)

        if consecutive_failures and consecutive_failures >= Constants.TRACKER_DLQ_THRESHOLD:
            await self.add_to_dead_letter_queue(
                job_name=job_name,
                error=error,
                context=f"Failed {consecutive_failures} consecutive times",
            )
        return consecutive_failures


# Global job tracker instance
job_tracker = JobTracker()


async def retry_job_with_backoff(
    job_func: Callable[[], Awaitable[None]],
    job_name: str,
    max_retries: int = Constants.TICK_MAX_RETRIES,
    base_delay: float = 2.0,
    tracker: JobTracker | None = None,
) -> None:
    """Execute a job with retries and exponential backoff, recording the outcome.

    Never raises: a job that fails every attempt is recorded as failed (and
    dead-lettered once failures are persistent) so the scheduler keeps running.

    Args:
        job_func: Async function to execute
        job_name: Name of the job for tracking
        max_retries: Maximum number of attempts
        base_delay: Delay before the first retry; doubles after each attempt
        tracker: Tracker to record into (defaults to the global job tracker)
    """
    tracker = tracker or job_tracker
    await tracker.record_job_start(job_name)

    last_error = None
    for attempt in range(max_retries):
        try:
            logger.info("Executing %s (attempt %d/%d)", job_name, attempt + 1, max_retries)
            await job_func()
        except Exception as e:
            last_error = str(e) or type(e).__name__
            logger.error("%s failed on attempt %d/%d: %s", job_name, attempt + 1, max_retries, last_error)

            if attempt < max_retries - 1:
                delay = base_delay * (2**attempt)
                logger.info("Retrying %s in %.1fs", job_name, delay)
                await asyncio.sleep(delay)
            continue

        await tracker.record_job_success(job_name)
        logger.info("%s completed successfully", job_name)
        return

    error_msg = f"Failed after {max_retries} attempts: {last_error}"
    consecutive_failures = await tracker.track_failure(job_name, error_msg)
    logger.error(
        "%s failed after all retry attempts",
        job_name,
        extra={"error": error_msg, "consecutive_failures": consecutive_failures},
    )
