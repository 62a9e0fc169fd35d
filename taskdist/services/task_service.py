"""Task store: idempotent inserts and queries over materialized tasks."""

import logging

from taskdist.core import db_client
from taskdist.core.config import constants
from taskdist.core.logging import span
from taskdist.domain.task import Task, TaskCreate, TaskStatus


logger = logging.getLogger(__name__)

COLLECTION = "tasks"


async def insert_if_absent(*, tasks: list[TaskCreate]) -> tuple[int, int]:
    """Insert tasks, skipping any whose idempotency key already exists.

    The key is (template_id, period_key, assignee_id, collection_point_id), with
    "no point" distinct from every point. All rows commit together or not at all.

    Args:
        tasks: Rows to insert

    Returns:
        (created, skipped) counts

    Raises:
        DatabaseError: If the insert fails; nothing is written in that case
    """
    with span("task_service.insert_if_absent"):
        rows = [task.model_dump() for task in tasks]
        created = await db_client.insert_many_or_ignore(collection=COLLECTION, rows=rows)
        return created, len(rows) - created


async def list_tasks(
    *,
    template_id: str | None = None,
    period_key: str | None = None,
    assignee_id: str | None = None,
    status: TaskStatus | None = None,
    page: int = 1,
    per_page: int = constants.DEFAULT_PER_PAGE_LIMIT,
) -> list[Task]:
    """List tasks with optional filters, oldest period first."""
    with span("task_service.list_tasks"):
        where: dict[str, str] = {}
        if template_id:
            where["template_id"] = template_id
        if period_key:
            where["period_key"] = period_key
        if assignee_id:
            where["assignee_id"] = assignee_id
        if status:
            where["status"] = status

        records = await db_client.list_records(
            collection=COLLECTION,
            where=where,
            sort="period_start ASC, id ASC",
            page=page,
            per_page=per_page,
        )
        logger.debug("Retrieved %d tasks", len(records))
        return [Task.model_validate(record) for record in records]

