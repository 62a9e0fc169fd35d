"""Tests for assignment_resolver."""

import pytest

from taskdist.core.config import settings
from taskdist.core.errors import DatabaseError, RegistryUnavailableError, TemplateValidationError
from taskdist.domain.registry import CollectionPointType
from taskdist.domain.template import TaskType
from taskdist.services import assignment_resolver
from tests.unit.mocks import FakeCollectionPointRegistry, FakeOrganizationRegistry, make_template, point, user


def pairs(resolution) -> list[tuple[str, str | None]]:  # noqa: ANN001
    return [(assignment.assignee.id, assignment.collection_point_id) for assignment in resolution.assignments]


@pytest.mark.unit
async def test_manual_assignees_preserve_order_and_dedupe() -> None:
    """Manual IDs become point-less assignments, first occurrence wins."""
    template = make_template(assignment={"mode": "MANUAL", "assignee_ids": ["u3", "u1", "u3", "u2"]})

    resolution = await assignment_resolver.resolve(template)

    assert pairs(resolution) == [("u3", None), ("u1", None), ("u2", None)]
    assert resolution.unassigned_points == []


@pytest.mark.unit
async def test_by_point_type_reports_unowned_points(port_points: FakeCollectionPointRegistry) -> None:
    """Five ports with one unowned yield four pairs across three assignees."""
    template = make_template(
        task_type=TaskType.COLLECTION,
        assignment={"mode": "BY_COLLECTION_POINT", "target_point_types": ["PORT"]},
    )

    resolution = await assignment_resolver.resolve(template, points=port_points)

    assert pairs(resolution) == [("u1", "p1"), ("u1", "p2"), ("u2", "p3"), ("u3", "p4")]
    assert [unowned.id for unowned in resolution.unassigned_points] == ["p5"]
    assert "s1" not in port_points.owner_lookups


@pytest.mark.unit
async def test_by_point_ids_keeps_explicit_order_and_skips_inactive(port_points: FakeCollectionPointRegistry) -> None:
    """Explicit IDs keep their order; IDs the registry does not return as active are dropped."""
    template = make_template(
        task_type=TaskType.COLLECTION,
        assignment={"mode": "BY_COLLECTION_POINT", "collection_point_ids": ["p4", "gone", "p1", "p4"]},
    )

    resolution = await assignment_resolver.resolve(template, points=port_points)

    assert pairs(resolution) == [("u3", "p4"), ("u1", "p1")]
    assert resolution.unassigned_points == []


@pytest.mark.unit
async def test_point_with_several_owners_yields_pair_per_owner() -> None:
    points = FakeCollectionPointRegistry(
        points=[point("m1", CollectionPointType.MARKET)],
        owners={"m1": [user("u1"), user("u2"), user("u1")]},
    )
    template = make_template(assignment={"mode": "BY_COLLECTION_POINT", "target_point_types": ["MARKET"]})

    resolution = await assignment_resolver.resolve(template, points=points)

    assert pairs(resolution) == [("u1", "m1"), ("u2", "m1")]


@pytest.mark.unit
async def test_by_department_unions_and_dedupes(organizations: FakeOrganizationRegistry) -> None:
    """A member of two departments receives a single assignment."""
    template = make_template(assignment={"mode": "BY_DEPARTMENT", "department_ids": ["d1", "d2", "empty"]})

    resolution = await assignment_resolver.resolve(template, organizations=organizations)

    assert pairs(resolution) == [("u1", None), ("u2", None), ("u3", None)]
    assert resolution.assignments[1].assignee.department_id == "d1"


@pytest.mark.unit
async def test_by_organization_unions_and_dedupes(organizations: FakeOrganizationRegistry) -> None:
    template = make_template(assignment={"mode": "BY_ORGANIZATION", "organization_ids": ["o1", "o2", "o1"]})

    resolution = await assignment_resolver.resolve(template, organizations=organizations)

    assert pairs(resolution) == [("u1", None), ("u2", None), ("u4", None)]
    assert organizations.calls == [("o1", None), ("o2", None)]


@pytest.mark.unit
async def test_empty_unit_resolves_to_no_assignments(organizations: FakeOrganizationRegistry) -> None:
    template = make_template(assignment={"mode": "BY_DEPARTMENT", "department_ids": ["empty"]})

    resolution = await assignment_resolver.resolve(template, organizations=organizations)

    assert resolution.assignments == []


@pytest.mark.unit
async def test_slow_registry_raises_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    """A lookup exceeding the registry timeout surfaces as RegistryUnavailableError."""
    monkeypatch.setattr(settings, "registry_timeout_seconds", 0.01)
    slow = FakeOrganizationRegistry(departments={"d1": [user("u1")]}, delay=1.0)
    template = make_template(assignment={"mode": "BY_DEPARTMENT", "department_ids": ["d1"]})

    with pytest.raises(RegistryUnavailableError, match="timed out"):
        await assignment_resolver.resolve(template, organizations=slow)


@pytest.mark.unit
@pytest.mark.parametrize("error", [ConnectionError("refused"), DatabaseError("disk I/O error")])
async def test_registry_failures_raise_unavailable(error: Exception) -> None:
    failing = FakeCollectionPointRegistry(error=error)
    template = make_template(assignment={"mode": "BY_COLLECTION_POINT", "target_point_types": ["PORT"]})

    with pytest.raises(RegistryUnavailableError):
        await assignment_resolver.resolve(template, points=failing)


@pytest.mark.unit
async def test_resolution_is_not_cached(port_points: FakeCollectionPointRegistry) -> None:
    """Registry changes between calls are reflected by the next resolve."""
    template = make_template(assignment={"mode": "BY_COLLECTION_POINT", "target_point_types": ["PORT"]})

    first = await assignment_resolver.resolve(template, points=port_points)
    port_points.owners["p5"] = [user("u5")]
    second = await assignment_resolver.resolve(template, points=port_points)

    assert len(first.assignments) == 4
    assert len(second.assignments) == 5
    assert second.unassigned_points == []


@pytest.mark.unit
async def test_assignee_override_skips_registry() -> None:
    organizations = FakeOrganizationRegistry(error=ConnectionError("registry down"))
    template = make_template(assignment={"mode": "BY_ORGANIZATION", "organization_ids": ["o1"]})

    resolution = await assignment_resolver.resolve(template, organizations=organizations, assignee_ids=["u5", "u5"])

    assert pairs(resolution) == [("u5", None)]
    assert organizations.calls == []


@pytest.mark.unit
async def test_assignee_override_rejected_for_point_rules() -> None:
    template = make_template(
        task_type=TaskType.COLLECTION,
        assignment={"mode": "BY_COLLECTION_POINT", "target_point_types": ["PORT"]},
    )

    with pytest.raises(TemplateValidationError, match="collection-point"):
        await assignment_resolver.resolve(template, points=FakeCollectionPointRegistry(), assignee_ids=["u5"])
