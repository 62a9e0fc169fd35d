"""Turn an occurrence into persisted tasks, idempotently."""

import logging
from datetime import datetime

from taskdist.core.logging import log_with_template_context, span
from taskdist.domain.occurrence import Occurrence
from taskdist.domain.task import MaterializeResult, TaskCreate, TaskStatus
from taskdist.domain.template import TaskTemplate
from taskdist.interface.registries import CollectionPointRegistry, OrganizationRegistry
from taskdist.services import assignment_resolver, schedule_calculator, task_service, template_service


logger = logging.getLogger(__name__)


def task_title(template: TaskTemplate, occurrence: Occurrence) -> str:
    """Title of every task generated for an occurrence."""
    return f"{template.name} [{occurrence.period_key}]"


async def materialize_template(
    template: TaskTemplate,
    occurrence: Occurrence,
    *,
    now: datetime,
    organizations: OrganizationRegistry | None = None,
    points: CollectionPointRegistry | None = None,
    assignee_ids: list[str] | None = None,
    override_due_at: datetime | None = None,
) -> MaterializeResult:
    """Create one PENDING task per resolved assignment pair of an occurrence.

    Existing tasks with the same (template, period, assignee, point) key are
    left untouched and counted as skipped, so repeating this call is safe. The
    occurrence's rows are written in one transaction.

    ``assignee_ids`` replaces the template's assignment rule and
    ``override_due_at`` replaces the computed deadline; both are for on-demand runs.

    Raises:
        RegistryUnavailableError: If assignment resolution fails
        TemplateValidationError: If an assignee override targets a collection-point template
        DatabaseError: If the insert fails (nothing is written)
    """
    with span("task_materializer.materialize"):
        resolution = await assignment_resolver.resolve(
            template, organizations=organizations, points=points, assignee_ids=assignee_ids
        )
        due_at = override_due_at or schedule_calculator.effective_due_at(template, occurrence)
        title = task_title(template, occurrence)

        tasks = [
            TaskCreate(
                template_id=template.id,
                period_key=occurrence.period_key,
                period_start=occurrence.period_start,
                period_end=occurrence.period_end,
                assignee_id=assignment.assignee.id,
                collection_point_id=assignment.collection_point_id,
                title=title,
                description=template.description,
                task_type=template.task_type,
                priority=template.priority,
                due_at=due_at,
                status=TaskStatus.PENDING,
                is_late=due_at < now,
                assignee_org_id=assignment.assignee.organization_id,
                assignee_dept_id=assignment.assignee.department_id,
                created=now,
            )
            for assignment in resolution.assignments
        ]

        created, skipped = await task_service.insert_if_absent(tasks=tasks)

    log_with_template_context(
        logger,
        "info",
        "Materialized occurrence",
        template_id=template.id,
        period_key=occurrence.period_key,
        created=created,
        skipped=skipped,
        unassigned_points=len(resolution.unassigned_points),
    )
    return MaterializeResult(period_key=occurrence.period_key, created=created, skipped=skipped)


async def materialize(
    template_id: str,
    occurrence: Occurrence,
    *,
    now: datetime,
    organizations: OrganizationRegistry | None = None,
    points: CollectionPointRegistry | None = None,
) -> MaterializeResult:
    """Materialize an occurrence of a stored template.

    Raises:
        TemplateNotFoundError: If the template does not exist
    """
    template = await template_service.get_template(template_id=template_id)
    return await materialize_template(template, occurrence, now=now, organizations=organizations, points=points)
