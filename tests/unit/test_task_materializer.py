"""Tests for task_materializer and the task store it writes through."""

from datetime import UTC, datetime, timedelta

import pytest

from taskdist.core.errors import RegistryUnavailableError, TemplateNotFoundError, TemplateValidationError
from taskdist.domain.task import TaskStatus
from taskdist.domain.template import ScheduleMode, TaskPriority, TaskTemplate, TaskType
from taskdist.services import schedule_calculator, task_materializer, task_service, template_service
from tests.unit.mocks import FakeCollectionPointRegistry, FakeOrganizationRegistry, make_create, user


NOON = datetime(2024, 3, 10, 12, 0, tzinfo=UTC)


async def _stored(**overrides) -> TaskTemplate:  # noqa: ANN003
    return await template_service.create_template(data=make_create(**overrides))


@pytest.mark.unit
async def test_materialize_creates_one_task_per_assignee(sqlite_db: str) -> None:
    template = await _stored(
        priority=TaskPriority.HIGH,
        assignment={"mode": "MANUAL", "assignee_ids": ["u1", "u2"]},
    )
    occurrence = schedule_calculator.occurrence_for_period(template, NOON)

    result = await task_materializer.materialize_template(template, occurrence, now=NOON)

    assert (result.period_key, result.created, result.skipped) == ("2024-03-10", 2, 0)
    tasks = await task_service.list_tasks(template_id=template.id)
    assert [task.assignee_id for task in tasks] == ["u1", "u2"]
    first = tasks[0]
    assert first.title == "Price report [2024-03-10]"
    assert first.status == TaskStatus.PENDING
    assert first.priority == TaskPriority.HIGH
    assert first.task_type == TaskType.REPORT
    assert first.collection_point_id is None
    assert first.period_start == occurrence.period_start
    assert first.period_end == occurrence.period_end
    assert first.due_at == datetime(2024, 3, 10, 18, 0, tzinfo=UTC)
    assert first.is_late is False


@pytest.mark.unit
async def test_materialize_is_idempotent(sqlite_db: str) -> None:
    """Repeating a materialization creates nothing new."""
    template = await _stored(assignment={"mode": "MANUAL", "assignee_ids": ["u1", "u2", "u3"]})
    occurrence = schedule_calculator.occurrence_for_period(template, NOON)

    first = await task_materializer.materialize_template(template, occurrence, now=NOON)
    second = await task_materializer.materialize_template(template, occurrence, now=NOON)

    assert (first.created, first.skipped) == (3, 0)
    assert (second.created, second.skipped) == (0, 3)
    assert len(await task_service.list_tasks(template_id=template.id)) == 3


@pytest.mark.unit
async def test_materialize_marks_late_tasks(sqlite_db: str) -> None:
    """Tasks whose deadline already passed at creation are flagged late."""
    template = await _stored()
    occurrence = schedule_calculator.occurrence_for_period(template, NOON)

    await task_materializer.materialize_template(template, occurrence, now=NOON + timedelta(days=1))

    [task] = await task_service.list_tasks(template_id=template.id)
    assert task.is_late is True


@pytest.mark.unit
async def test_point_default_deadline_uses_offset(sqlite_db: str) -> None:
    template = await _stored(schedule_mode=ScheduleMode.POINT_DEFAULT, deadline_offset_hours=6)
    occurrence = schedule_calculator.occurrence_for_period(template, NOON)

    await task_materializer.materialize_template(template, occurrence, now=NOON)

    [task] = await task_service.list_tasks(template_id=template.id)
    assert task.due_at == datetime(2024, 3, 10, 15, 0, tzinfo=UTC)


@pytest.mark.unit
async def test_point_binding_creates_task_per_pair(sqlite_db: str, port_points: FakeCollectionPointRegistry) -> None:
    """Owned ports each get a task; the unowned port gets none."""
    template = await _stored(
        task_type=TaskType.COLLECTION,
        assignment={"mode": "BY_COLLECTION_POINT", "target_point_types": ["PORT"]},
    )
    occurrence = schedule_calculator.occurrence_for_period(template, NOON)

    result = await task_materializer.materialize_template(template, occurrence, now=NOON, points=port_points)

    assert result.created == 4
    tasks = await task_service.list_tasks(template_id=template.id)
    assert sorted((task.assignee_id, task.collection_point_id) for task in tasks) == [
        ("u1", "p1"),
        ("u1", "p2"),
        ("u2", "p3"),
        ("u3", "p4"),
    ]


@pytest.mark.unit
async def test_new_owner_only_adds_missing_pair(sqlite_db: str, port_points: FakeCollectionPointRegistry) -> None:
    """Re-materializing after registry drift fills gaps without touching existing tasks."""
    template = await _stored(
        task_type=TaskType.COLLECTION,
        assignment={"mode": "BY_COLLECTION_POINT", "target_point_types": ["PORT"]},
    )
    occurrence = schedule_calculator.occurrence_for_period(template, NOON)
    await task_materializer.materialize_template(template, occurrence, now=NOON, points=port_points)

    port_points.owners["p5"] = [user("u5")]
    result = await task_materializer.materialize_template(template, occurrence, now=NOON, points=port_points)

    assert (result.created, result.skipped) == (1, 4)


@pytest.mark.unit
async def test_member_snapshot_is_stored(sqlite_db: str) -> None:
    organizations = FakeOrganizationRegistry(
        departments={"d1": [user("u1", organization_id="o1", department_id="d1")]}
    )
    template = await _stored(assignment={"mode": "BY_DEPARTMENT", "department_ids": ["d1"]})
    occurrence = schedule_calculator.occurrence_for_period(template, NOON)

    await task_materializer.materialize_template(template, occurrence, now=NOON, organizations=organizations)

    [task] = await task_service.list_tasks(template_id=template.id)
    assert (task.assignee_org_id, task.assignee_dept_id) == ("o1", "d1")


@pytest.mark.unit
async def test_registry_failure_writes_nothing(sqlite_db: str) -> None:
    template = await _stored(assignment={"mode": "BY_DEPARTMENT", "department_ids": ["d1"]})
    occurrence = schedule_calculator.occurrence_for_period(template, NOON)
    failing = FakeOrganizationRegistry(error=ConnectionError("registry down"))

    with pytest.raises(RegistryUnavailableError):
        await task_materializer.materialize_template(template, occurrence, now=NOON, organizations=failing)

    assert await task_service.list_tasks(template_id=template.id) == []


@pytest.mark.unit
async def test_materialize_by_id(sqlite_db: str) -> None:
    template = await _stored()
    occurrence = schedule_calculator.occurrence_for_period(template, NOON)

    result = await task_materializer.materialize(template.id, occurrence, now=NOON)

    assert result.created == 1
    with pytest.raises(TemplateNotFoundError):
        await task_materializer.materialize("404", occurrence, now=NOON)


@pytest.mark.unit
async def test_list_tasks_filters(sqlite_db: str) -> None:
    template = await _stored(assignment={"mode": "MANUAL", "assignee_ids": ["u1", "u2"]})
    for day in (9, 10):
        occurrence = schedule_calculator.occurrence_for_period(template, datetime(2024, 3, day, 12, 0, tzinfo=UTC))
        await task_materializer.materialize_template(template, occurrence, now=NOON)

    by_period = await task_service.list_tasks(template_id=template.id, period_key="2024-03-09")
    by_assignee = await task_service.list_tasks(assignee_id="u2")
    pending = await task_service.list_tasks(status=TaskStatus.PENDING, per_page=3)

    assert {task.assignee_id for task in by_period} == {"u1", "u2"}
    assert [task.period_key for task in by_assignee] == ["2024-03-09", "2024-03-10"]
    assert len(pending) == 3


@pytest.mark.unit
async def test_description_is_copied_onto_tasks(sqlite_db: str) -> None:
    template = await _stored(description="Collect closing prices")
    occurrence = schedule_calculator.occurrence_for_period(template, NOON)

    await task_materializer.materialize_template(template, occurrence, now=NOON)

    [task] = await task_service.list_tasks(template_id=template.id)
    assert task.description == "Collect closing prices"


@pytest.mark.unit
async def test_overrides_replace_assignees_and_deadline(sqlite_db: str) -> None:
    """Override assignees bypass the registry; the override deadline drives lateness."""
    template = await _stored(assignment={"mode": "BY_DEPARTMENT", "department_ids": ["d1"]})
    occurrence = schedule_calculator.occurrence_for_period(template, NOON)
    deadline = datetime(2024, 3, 10, 11, 0, tzinfo=UTC)

    result = await task_materializer.materialize_template(
        template,
        occurrence,
        now=NOON,
        organizations=FakeOrganizationRegistry(error=ConnectionError("registry down")),
        assignee_ids=["u7", "u8", "u7"],
        override_due_at=deadline,
    )

    assert result.created == 2
    tasks = await task_service.list_tasks(template_id=template.id)
    assert [task.assignee_id for task in tasks] == ["u7", "u8"]
    assert all(task.due_at == deadline and task.is_late for task in tasks)


@pytest.mark.unit
async def test_assignee_override_rejected_for_point_templates(
    sqlite_db: str, port_points: FakeCollectionPointRegistry
) -> None:
    template = await _stored(
        task_type=TaskType.COLLECTION,
        assignment={"mode": "BY_COLLECTION_POINT", "target_point_types": ["PORT"]},
    )
    occurrence = schedule_calculator.occurrence_for_period(template, NOON)

    with pytest.raises(TemplateValidationError):
        await task_materializer.materialize_template(
            template, occurrence, now=NOON, points=port_points, assignee_ids=["u7"]
        )

    assert await task_service.list_tasks(template_id=template.id) == []
