"""Template store: CRUD plus the scheduler's view of active templates."""

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from taskdist.core import db_client
from taskdist.core.config import constants
from taskdist.core.errors import RecordNotFoundError, TemplateNotFoundError, TemplateValidationError
from taskdist.core.logging import span
from taskdist.domain.template import (
    TaskTemplate,
    TaskTemplateCreate,
    TaskTemplateUpdate,
    TemplateFields,
    validate_template_rules,
)


logger = logging.getLogger(__name__)

COLLECTION = "task_templates"


def _to_record(template: TaskTemplateCreate) -> dict[str, Any]:
    return template.model_dump(mode="python")


async def create_template(*, data: TaskTemplateCreate) -> TaskTemplate:
    """Validate and persist a new template.

    Raises:
        TemplateValidationError: If cross-field rules reject the template
        DatabaseError: If the insert fails
    """
    with span("template_service.create_template"):
        validate_template_rules(data)

        now = datetime.now(UTC)
        record = await db_client.create_record(
            collection=COLLECTION,
            data={**_to_record(data), "created": now, "updated": now},
        )
        logger.info("Created template %s (%s, %s)", record["id"], data.name, data.cycle_type)
        return TaskTemplate.model_validate(record)


async def get_template(*, template_id: str) -> TaskTemplate:
    """Fetch a template.

    Raises:
        TemplateNotFoundError: If no template has this ID
    """
    try:
        record = await db_client.get_record(collection=COLLECTION, record_id=template_id)
    except RecordNotFoundError as e:
        raise TemplateNotFoundError(f"Template not found: {template_id}") from e
    return TaskTemplate.model_validate(record)


async def list_templates(
    *,
    is_active: bool | None = None,
    page: int = 1,
    per_page: int = constants.DEFAULT_PER_PAGE_LIMIT,
) -> list[TaskTemplate]:
    """List templates, optionally only active or inactive ones."""
    filter_query = f'is_active = "{int(is_active)}"' if is_active is not None else ""
    records = await db_client.list_records(
        collection=COLLECTION,
        filter_query=filter_query,
        page=page,
        per_page=per_page,
    )
    return [TaskTemplate.model_validate(record) for record in records]


async def update_template(*, template_id: str, data: TaskTemplateUpdate) -> TaskTemplate:
    """Apply a partial update, re-validating the merged template.

    Any change clears ``next_run_at`` so the scheduler recomputes it from the
    new schedule; ``last_run_at`` is kept so already-generated periods are not
    generated again.

    Raises:
        TemplateNotFoundError: If no template has this ID
        TemplateValidationError: If the merged template breaks cross-field rules
    """
    with span("template_service.update_template"):
        existing = await get_template(template_id=template_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return existing

        merged = existing.model_dump(include=set(TemplateFields.model_fields) | {"is_active"})
        merged.update(changes)
        try:
            candidate = TaskTemplateCreate.model_validate(merged)
        except ValidationError as e:
            raise TemplateValidationError(f"Invalid template update: {e}") from e
        validate_template_rules(candidate)

        record = await db_client.update_record(
            collection=COLLECTION,
            record_id=template_id,
            data={**_to_record(candidate), "next_run_at": None, "updated": datetime.now(UTC)},
        )
        logger.info("Updated template %s", template_id, extra={"fields": sorted(changes)})
        return TaskTemplate.model_validate(record)


async def delete_template(*, template_id: str) -> None:
    """Delete a template and, through the foreign key, its tasks.

    Raises:
        TemplateNotFoundError: If no template has this ID
    """
    try:
        await db_client.delete_record(collection=COLLECTION, record_id=template_id)
    except RecordNotFoundError as e:
        raise TemplateNotFoundError(f"Template not found: {template_id}") from e
    logger.info("Deleted template %s", template_id)


def _in_window(template: TaskTemplate, now: datetime) -> bool:
    if template.active_from is not None and template.active_from > now:
        return False
    return template.active_until is None or template.active_until >= now


async def list_active_templates(*, now: datetime) -> list[TaskTemplate]:
    """Active templates whose window contains ``now``, earliest ``next_run_at`` first."""
    with span("template_service.list_active_templates"):
        records = await db_client.list_all_records(
            collection=COLLECTION,
            filter_query='is_active = "1"',
            sort="next_run_at ASC, id ASC",
        )
        templates = [TaskTemplate.model_validate(record) for record in records]
        return [template for template in templates if _in_window(template, now)]


async def update_run_bookkeeping(
    *,
    template_id: str,
    last_run_at: datetime | None,
    next_run_at: datetime | None,
    is_active: bool | None = None,
) -> TaskTemplate:
    """Record a run in a single UPDATE.

    Raises:
        TemplateNotFoundError: If the template was deleted meanwhile
    """
    data: dict[str, Any] = {
        "last_run_at": last_run_at,
        "next_run_at": next_run_at,
        "updated": datetime.now(UTC),
    }
    if is_active is not None:
        data["is_active"] = is_active

    try:
        record = await db_client.update_record(collection=COLLECTION, record_id=template_id, data=data)
    except RecordNotFoundError as e:
        raise TemplateNotFoundError(f"Template not found: {template_id}") from e

    logger.debug(
        "Updated run bookkeeping",
        extra={"template_id": template_id, "last_run_at": str(last_run_at), "next_run_at": str(next_run_at)},
    )
    return TaskTemplate.model_validate(record)
