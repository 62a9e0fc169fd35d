"""Side-effect-free preview of what executing a template would create."""

import logging
from datetime import datetime

from taskdist.core.logging import span
from taskdist.domain.assignment import AssigneePreview, DistributionPreview
from taskdist.interface.registries import CollectionPointRegistry, OrganizationRegistry
from taskdist.services import assignment_resolver, schedule_calculator, template_service


logger = logging.getLogger(__name__)


async def preview(
    template_id: str,
    *,
    now: datetime,
    organizations: OrganizationRegistry | None = None,
    points: CollectionPointRegistry | None = None,
) -> DistributionPreview:
    """Resolve the current occurrence's assignments without writing anything.

    The result is advisory: registries may change before an execute, which
    resolves again. Assignees appear in resolution order.

    Raises:
        TemplateNotFoundError: If the template does not exist
        RegistryUnavailableError: If a registry lookup fails
    """
    with span("distribution_previewer.preview"):
        template = await template_service.get_template(template_id=template_id)
        occurrence = schedule_calculator.current_period_occurrence(template, now)
        resolution = await assignment_resolver.resolve(template, organizations=organizations, points=points)

        rows: dict[str, AssigneePreview] = {}
        for assignment in resolution.assignments:
            row = rows.get(assignment.assignee.id)
            if row is None:
                row = AssigneePreview(assignee_id=assignment.assignee.id, assignee_name=assignment.assignee.name)
                rows[assignment.assignee.id] = row
            row.task_count += 1
            if assignment.collection_point is not None:
                row.collection_points.append(assignment.collection_point)

        result = DistributionPreview(
            template_id=template.id,
            period_key=occurrence.period_key if occurrence else None,
            due_at=schedule_calculator.effective_due_at(template, occurrence) if occurrence else None,
            total_tasks=len(resolution.assignments),
            total_assignees=len(rows),
            assignees=list(rows.values()),
            unassigned_points=resolution.unassigned_points,
        )

    logger.info(
        "Previewed distribution",
        extra={
            "template_id": template.id,
            "total_tasks": result.total_tasks,
            "total_assignees": result.total_assignees,
        },
    )
    return result
