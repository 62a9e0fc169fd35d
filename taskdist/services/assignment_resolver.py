"""Resolve a template's assignment rule into (assignee, collection point) pairs."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from taskdist.core.config import settings
from taskdist.core.errors import DatabaseError, RegistryUnavailableError, TemplateValidationError
from taskdist.core.logging import log_with_template_context, span
from taskdist.domain.assignment import Assignment, Resolution
from taskdist.domain.registry import PointRef, UserRef
from taskdist.domain.template import (
    ByCollectionPoint,
    ByDepartment,
    ByOrganization,
    ManualAssignees,
    TaskTemplate,
)
from taskdist.interface.registries import (
    CollectionPointRegistry,
    OrganizationRegistry,
    get_collection_point_registry,
    get_organization_registry,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _lookup(description: str, call: Callable[[], Awaitable[T]]) -> T:
    """Run one registry lookup bounded by the configured timeout."""
    try:
        async with asyncio.timeout(settings.registry_timeout_seconds):
            return await call()
    except TimeoutError as e:
        raise RegistryUnavailableError(
            f"Registry lookup timed out after {settings.registry_timeout_seconds}s: {description}"
        ) from e
    except (DatabaseError, ConnectionError) as e:
        raise RegistryUnavailableError(f"Registry lookup failed: {description}: {e}") from e


def _unique_members(groups: list[list[UserRef]]) -> list[Assignment]:
    seen: dict[str, UserRef] = {}
    for members in groups:
        for member in members:
            seen.setdefault(member.id, member)
    return [Assignment(assignee=member) for member in seen.values()]


async def _resolve_points(
    rule: ByCollectionPoint, *, points: CollectionPointRegistry, template_id: str
) -> Resolution:
    if rule.collection_point_ids:
        found = await _lookup(
            "active points by id",
            lambda: points.list_active_points(ids=rule.collection_point_ids),
        )
        # Keep the operator's ordering of explicit IDs
        by_id = {point.id: point for point in found}
        scope = [by_id[point_id] for point_id in dict.fromkeys(rule.collection_point_ids) if point_id in by_id]
    else:
        scope = await _lookup(
            "active points by type",
            lambda: points.list_active_points(types=rule.target_point_types),
        )

    assignments: list[Assignment] = []
    unassigned: list[PointRef] = []
    for point in scope:
        owners = await _lookup(f"owners of point {point.id}", lambda point=point: points.list_owners(point_id=point.id))
        if not owners:
            log_with_template_context(
                logger, "info", "Collection point has no owner", template_id=template_id, point_id=point.id
            )
            unassigned.append(point)
            continue

        seen: set[str] = set()
        for owner in owners:
            if owner.id in seen:
                continue
            seen.add(owner.id)
            assignments.append(Assignment(assignee=owner, collection_point=point))

    return Resolution(assignments=assignments, unassigned_points=unassigned)


def manual_resolution(assignee_ids: list[str]) -> Resolution:
    """Assignments for explicitly named users, de-duplicated in order. No registry lookup."""
    return Resolution(
        assignments=[
            Assignment(assignee=UserRef(id=assignee_id, name=assignee_id))
            for assignee_id in dict.fromkeys(assignee_ids)
        ]
    )


async def resolve(
    template: TaskTemplate,
    *,
    organizations: OrganizationRegistry | None = None,
    points: CollectionPointRegistry | None = None,
    assignee_ids: list[str] | None = None,
) -> Resolution:
    """Resolve who receives tasks for a template right now.

    Read-only and uncached: registry state may drift between calls, and the
    latest call is authoritative. Gaps (points without owners, empty units)
    are returned as data, never raised.

    Args:
        template: Template whose assignment rule to resolve
        organizations: Organization registry (defaults to the configured one)
        points: Collection-point registry (defaults to the configured one)
        assignee_ids: Operator override; when non-empty these users replace the template's rule

    Returns:
        Resolution with assignment pairs and unowned points

    Raises:
        RegistryUnavailableError: If a registry lookup fails or times out
        TemplateValidationError: If an override targets a collection-point template
    """
    rule = template.assignment
    if assignee_ids:
        if isinstance(rule, ByCollectionPoint):
            raise TemplateValidationError("Assignee overrides are not supported for collection-point templates")
        return manual_resolution(assignee_ids)

    with span("assignment_resolver.resolve"):
        match rule:
            case ManualAssignees():
                resolution = manual_resolution(rule.assignee_ids)
            case ByCollectionPoint():
                resolution = await _resolve_points(
                    rule, points=points or get_collection_point_registry(), template_id=template.id
                )
            case ByDepartment():
                registry = organizations or get_organization_registry()
                groups = [
                    await _lookup(
                        f"members of department {department_id}",
                        lambda department_id=department_id: registry.list_active_members(department_id=department_id),
                    )
                    for department_id in dict.fromkeys(rule.department_ids)
                ]
                resolution = Resolution(assignments=_unique_members(groups))
            case ByOrganization():
                registry = organizations or get_organization_registry()
                groups = [
                    await _lookup(
                        f"members of organization {organization_id}",
                        lambda organization_id=organization_id: registry.list_active_members(
                            organization_id=organization_id
                        ),
                    )
                    for organization_id in dict.fromkeys(rule.organization_ids)
                ]
                resolution = Resolution(assignments=_unique_members(groups))

    logger.debug(
        "Resolved assignments",
        extra={
            "template_id": template.id,
            "mode": rule.mode,
            "assignments": len(resolution.assignments),
            "unassigned_points": len(resolution.unassigned_points),
        },
    )
    return resolution
