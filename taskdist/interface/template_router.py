"""HTTP interface for template management, preview, and on-demand execution."""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException, Query, Response, status

from taskdist.core.config import constants
from taskdist.core.errors import RegistryUnavailableError, TemplateNotFoundError, TemplateValidationError
from taskdist.domain.assignment import DistributionPreview
from taskdist.domain.task import ExecuteOptions, Task, TemplateRunResult
from taskdist.domain.template import TaskTemplate, TaskTemplateCreate, TaskTemplateUpdate
from taskdist.services import distribution_previewer, task_service, template_scheduler, template_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/templates", tags=["templates"])


def _resolve_now(now: datetime | None) -> datetime:
    """Default to the current time; naive query values are taken as UTC."""
    if now is None:
        return datetime.now(UTC)
    return now if now.tzinfo is not None else now.replace(tzinfo=UTC)


def _not_found(e: TemplateNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def _invalid(e: TemplateValidationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


def _unavailable(e: RegistryUnavailableError) -> HTTPException:
    logger.warning("registry_unavailable", extra={"error": str(e)})
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_template(payload: TaskTemplateCreate) -> TaskTemplate:
    """Create a template."""
    try:
        return await template_service.create_template(data=payload)
    except TemplateValidationError as e:
        raise _invalid(e) from e


@router.get("")
async def list_templates(
    is_active: bool | None = None,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=constants.DEFAULT_PER_PAGE_LIMIT, ge=1, le=500),
) -> list[TaskTemplate]:
    """List templates."""
    return await template_service.list_templates(is_active=is_active, page=page, per_page=per_page)


@router.get("/{template_id}")
async def get_template(template_id: str) -> TaskTemplate:
    """Fetch one template."""
    try:
        return await template_service.get_template(template_id=template_id)
    except TemplateNotFoundError as e:
        raise _not_found(e) from e


@router.patch("/{template_id}")
async def update_template(template_id: str, payload: TaskTemplateUpdate) -> TaskTemplate:
    """Partially update a template."""
    try:
        return await template_service.update_template(template_id=template_id, data=payload)
    except TemplateNotFoundError as e:
        raise _not_found(e) from e
    except TemplateValidationError as e:
        raise _invalid(e) from e


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(template_id: str) -> Response:
    """Delete a template and its tasks."""
    try:
        await template_service.delete_template(template_id=template_id)
    except TemplateNotFoundError as e:
        raise _not_found(e) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{template_id}/preview")
async def preview_template(template_id: str, now: datetime | None = None) -> DistributionPreview:
    """Show what executing the template now would create. Writes nothing."""
    try:
        return await distribution_previewer.preview(template_id, now=_resolve_now(now))
    except TemplateNotFoundError as e:
        raise _not_found(e) from e
    except RegistryUnavailableError as e:
        raise _unavailable(e) from e


@router.post("/{template_id}/execute")
async def execute_template(
    template_id: str, options: ExecuteOptions | None = None, now: datetime | None = None
) -> TemplateRunResult:
    """Materialize the template's current occurrence immediately, with optional overrides."""
    options = options or ExecuteOptions()
    try:
        return await template_scheduler.execute(
            template_id,
            now=_resolve_now(now),
            assignee_ids=options.assignee_ids,
            override_due_at=options.override_due_at,
        )
    except TemplateNotFoundError as e:
        raise _not_found(e) from e
    except TemplateValidationError as e:
        raise _invalid(e) from e
    except RegistryUnavailableError as e:
        raise _unavailable(e) from e


@router.get("/{template_id}/tasks")
async def list_template_tasks(
    template_id: str,
    period_key: str | None = None,
    assignee_id: str | None = None,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=constants.DEFAULT_PER_PAGE_LIMIT, ge=1, le=500),
) -> list[Task]:
    """List tasks generated by a template."""
    try:
        await template_service.get_template(template_id=template_id)
    except TemplateNotFoundError as e:
        raise _not_found(e) from e

    return await task_service.list_tasks(
        template_id=template_id,
        period_key=period_key,
        assignee_id=assignee_id,
        page=page,
        per_page=per_page,
    )
