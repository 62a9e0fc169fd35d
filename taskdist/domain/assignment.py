"""Assignment resolution and distribution preview models."""

from datetime import datetime

from pydantic import BaseModel, Field

from taskdist.domain.registry import PointRef, UserRef


class Assignment(BaseModel):
    """One (assignee, collection point) pair; each pair becomes one task."""

    assignee: UserRef
    collection_point: PointRef | None = None

    @property
    def collection_point_id(self) -> str | None:
        return self.collection_point.id if self.collection_point else None


class Resolution(BaseModel):
    """Who receives tasks for a template, plus points nobody owns."""

    assignments: list[Assignment] = Field(default_factory=list)
    unassigned_points: list[PointRef] = Field(default_factory=list)


class AssigneePreview(BaseModel):
    """Per-assignee row of a distribution preview."""

    assignee_id: str
    assignee_name: str
    collection_points: list[PointRef] = Field(default_factory=list)
    task_count: int = 0


class DistributionPreview(BaseModel):
    """What materializing the current occurrence would create, without creating it."""

    template_id: str
    period_key: str | None = Field(default=None, description="None when the template has no current occurrence")
    due_at: datetime | None = None
    total_tasks: int = 0
    total_assignees: int = 0
    assignees: list[AssigneePreview] = Field(default_factory=list)
    unassigned_points: list[PointRef] = Field(default_factory=list)
