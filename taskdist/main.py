"""taskdist - recurring task distribution engine."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from taskdist.core.config import constants, settings
from taskdist.core.db_client import close_connection, init_db
from taskdist.core.logging import configure_logfire, instrument_fastapi
from taskdist.core.redis_client import redis_client
from taskdist.core.scheduler import start_scheduler, stop_scheduler
from taskdist.core.scheduler_tracker import job_tracker
from taskdist.interface.template_router import router as template_router


logger = logging.getLogger(__name__)


async def check_redis_connectivity() -> None:
    """Verify Redis connectivity (optional service).

    Logs a warning if Redis is configured but unreachable; job history then
    falls back to memory.
    """
    if not redis_client.is_available:
        logger.info("startup_validation", extra={"service": "redis", "status": "disabled"})
        return

    if await redis_client.ping():
        logger.info("startup_validation", extra={"service": "redis", "status": "ok"})
    else:
        logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable"})


async def validate_startup_configuration() -> None:
    """Fail fast on configuration that cannot work.

    Raises:
        SystemExit: If the remote registry is configured without credentials
    """
    logger.info("startup_validation_begin")

    try:
        if settings.registry_base_url:
            settings.require_credential("registry_api_key", "Registry API key")
        await check_redis_connectivity()
    except ValueError as e:
        logger.error("startup_validation_failed", extra={"error": str(e)})
        print(f"\nStartup validation failed: {e}\n", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger.info("startup_validation_complete", extra={"status": "ok"})


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Configure logging first so validation logs are captured
    configure_logfire()
    await validate_startup_configuration()

    await init_db()
    logger.info("Database initialized")

    start_scheduler()
    yield
    stop_scheduler()
    await redis_client.close()
    await close_connection()


app = FastAPI(
    title="taskdist",
    description="Recurring task distribution engine",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

app.include_router(template_router)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "healthy"}, status_code=constants.HTTP_OK)


@app.get("/health/scheduler")
async def scheduler_health_check() -> JSONResponse:
    """Scheduler health: the tick job plus every template processed so far."""
    job_names = [constants.TICK_JOB_ID, *(name for name in job_tracker.known_jobs if name != constants.TICK_JOB_ID)]

    job_statuses = {}
    for job_name in job_names:
        job_statuses[job_name] = await job_tracker.get_job_status(job_name)

    dlq = job_tracker.get_dead_letter_queue()

    has_failures = any(job_status["consecutive_failures"] > 0 for job_status in job_statuses.values())
    overall_status = "degraded" if has_failures else "healthy"
    if dlq:
        overall_status = "critical"

    return JSONResponse(
        content={
            "status": overall_status,
            "jobs": job_statuses,
            "failing_templates": sorted(
                name
                for name, job_status in job_statuses.items()
                if name != constants.TICK_JOB_ID and job_status["consecutive_failures"] > 0
            ),
            "dead_letter_queue_size": len(dlq),
            "dead_letter_queue": dlq,
            "redis": redis_client.get_health_status(),
        },
        status_code=constants.HTTP_OK if overall_status == "healthy" else constants.HTTP_SERVICE_UNAVAILABLE,
    )
