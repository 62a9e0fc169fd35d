"""Distribution driver: decides what each template owes and materializes it.

A tick processes templates concurrently, each isolated from the others: a
failure or timeout marks only that template failed and it is picked up again
on the next tick. Overlapping ticks are safe because task inserts are
idempotent, not because ticks exclude each other.
"""

import asyncio
import logging
from datetime import UTC, datetime

from taskdist.core.config import settings
from taskdist.core.errors import classify_error
from taskdist.core.logging import log_with_template_context, span
from taskdist.core.scheduler_tracker import JobTracker, job_tracker, template_job_name
from taskdist.domain.occurrence import Occurrence
from taskdist.domain.task import TemplateRunResult, TickSummary
from taskdist.domain.template import CycleType, TaskTemplate
from taskdist.interface.registries import CollectionPointRegistry, OrganizationRegistry
from taskdist.services import backfill_planner, schedule_calculator, task_materializer, template_service


logger = logging.getLogger(__name__)


def plan_occurrences(template: TaskTemplate, *, now: datetime) -> list[Occurrence]:
    """Occurrences to materialize for a template at ``now``, oldest first.

    A template that never ran gets only its first occurrence. Otherwise the
    missed periods are merged with the current one, one entry per period.
    """
    planned = backfill_planner.missed_occurrences(template, template.last_run_at, now)
    if template.last_run_at is None:
        return planned

    current = backfill_planner.current_occurrence(template, template.last_run_at, now)
    if current is not None:
        planned.append(current)

    unique = {occurrence.period_key: occurrence for occurrence in planned}
    return sorted(unique.values(), key=lambda occurrence: occurrence.run_at)


async def _record_progress(template: TaskTemplate, newest: Occurrence) -> None:
    """Advance bookkeeping past ``newest``; never moves last_run_at backwards."""
    if template.last_run_at is not None and newest.period_start <= template.last_run_at:
        return

    if template.cycle_type == CycleType.ONE_TIME:
        await template_service.update_run_bookkeeping(
            template_id=template.id,
            last_run_at=newest.period_start,
            next_run_at=None,
            is_active=False,
        )
        logger.info("Deactivated one-time template %s after its run", template.id)
        return

    following = schedule_calculator.following_occurrence(template, newest)
    await template_service.update_run_bookkeeping(
        template_id=template.id,
        last_run_at=newest.period_start,
        next_run_at=following.run_at if following else None,
    )


async def process_template(
    template: TaskTemplate,
    *,
    now: datetime,
    organizations: OrganizationRegistry | None = None,
    points: CollectionPointRegistry | None = None,
) -> TemplateRunResult:
    """Materialize everything a template owes at ``now`` and update its bookkeeping."""
    result = TemplateRunResult(template_id=template.id)
    if template.next_run_at is not None and template.next_run_at > now:
        return result

    with span("template_scheduler.process_template"):
        occurrences = plan_occurrences(template, now=now)

        if not occurrences:
            upcoming = schedule_calculator.next_occurrence(template, now)
            next_run_at = upcoming.run_at if upcoming else None
            if next_run_at != template.next_run_at:
                await template_service.update_run_bookkeeping(
                    template_id=template.id,
                    last_run_at=template.last_run_at,
                    next_run_at=next_run_at,
                )
            return result

        for occurrence in occurrences:
            result.occurrences.append(
                await task_materializer.materialize_template(
                    template, occurrence, now=now, organizations=organizations, points=points
                )
            )

        await _record_progress(template, occurrences[-1])

    log_with_template_context(
        logger,
        "info",
        "Processed template",
        template_id=template.id,
        periods=[occurrence.period_key for occurrence in occurrences],
        created=result.created,
        skipped=result.skipped,
    )
    return result


async def _process_isolated(
    template: TaskTemplate,
    *,
    now: datetime,
    tracker: JobTracker,
    organizations: OrganizationRegistry | None,
    points: CollectionPointRegistry | None,
) -> TemplateRunResult:
    job_name = template_job_name(template.id)
    await tracker.record_job_start(job_name)

    try:
        async with asyncio.timeout(settings.template_timeout_seconds):
            result = await process_template(template, now=now, organizations=organizations, points=points)
    except Exception as e:
        report = classify_error(e)
        log_with_template_context(
            logger,
            "error",
            "Template processing failed",
            template_id=template.id,
            category=report.category.value,
            retryable=report.retryable,
            error=report.message,
        )
        await tracker.track_failure(job_name, f"{report.category.value}: {report.message}")
        return TemplateRunResult(template_id=template.id, error=report.message)

    await tracker.record_job_success(job_name)
    return result


async def run_tick(
    *,
    now: datetime | None = None,
    tracker: JobTracker | None = None,
    organizations: OrganizationRegistry | None = None,
    points: CollectionPointRegistry | None = None,
) -> TickSummary:
    """Process every active template once.

    At most ``scheduler_max_concurrency`` templates run at a time. Cancelling
    the tick cancels in-flight templates, whose writes roll back as a whole.

    Raises:
        DatabaseError: If the active templates cannot be listed
    """
    now = now or datetime.now(UTC)
    tracker = tracker or job_tracker

    with span("template_scheduler.run_tick"):
        templates = await template_service.list_active_templates(now=now)
        semaphore = asyncio.Semaphore(settings.scheduler_max_concurrency)

        async def worker(template: TaskTemplate) -> TemplateRunResult:
            async with semaphore:
                return await _process_isolated(
                    template, now=now, tracker=tracker, organizations=organizations, points=points
                )

        results = await asyncio.gather(*(worker(template) for template in templates))

    summary = TickSummary(
        processed=len(results),
        failed=sum(1 for result in results if result.error),
        created=sum(result.created for result in results),
        skipped=sum(result.skipped for result in results),
        results=list(results),
    )
    logger.info(
        "Distribution tick complete",
        extra={
            "templates": summary.processed,
            "failed": summary.failed,
            "created": summary.created,
            "skipped": summary.skipped,
        },
    )
    return summary


async def execute(
    template_id: str,
    *,
    now: datetime,
    organizations: OrganizationRegistry | None = None,
    points: CollectionPointRegistry | None = None,
    assignee_ids: list[str] | None = None,
    override_due_at: datetime | None = None,
) -> TemplateRunResult:
    """Materialize a template's current occurrence on demand, bypassing the tick.

    Re-resolves assignments, so the outcome may differ from an earlier preview.

    Args:
        template_id: Template to run
        now: Reference time selecting the current period
        organizations: Organization registry (defaults to the configured one)
        points: Collection-point registry (defaults to the configured one)
        assignee_ids: Users who receive the tasks instead of the template's rule
        override_due_at: Deadline for every task instead of the computed one

    Raises:
        TemplateNotFoundError: If the template does not exist
        TemplateValidationError: If an assignee override targets a collection-point template
        RegistryUnavailableError: If assignment resolution fails
    """
    with span("template_scheduler.execute"):
        template = await template_service.get_template(template_id=template_id)
        occurrence = schedule_calculator.current_period_occurrence(template, now)
        result = TemplateRunResult(template_id=template.id)
        if occurrence is None:
            logger.info("Template %s has no current occurrence to execute", template_id)
            return result

        result.occurrences.append(
            await task_materializer.materialize_template(
                template,
                occurrence,
                now=now,
                organizations=organizations,
                points=points,
                assignee_ids=assignee_ids,
                override_due_at=override_due_at,
            )
        )
        await _record_progress(template, occurrence)

    return result


async def distribution_tick() -> None:
    """Scheduled entry point for the periodic tick."""
    summary = await run_tick()
    if summary.failed:
        logger.warning("%d of %d templates failed this tick", summary.failed, summary.processed)
