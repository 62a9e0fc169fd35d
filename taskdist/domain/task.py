"""Materialized task domain models."""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import AliasChoices, BaseModel, Field, computed_field, field_validator

from taskdist.domain.template import TaskPriority, TaskType


class TaskStatus(StrEnum):
    """Task lifecycle state. The engine only ever writes PENDING."""

    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    RETURNED = "RETURNED"
    COMPLETED = "COMPLETED"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class Task(BaseModel):
    """A task generated for one assignee (and optionally one point) in one period."""

    id: str = Field(..., description="Unique task ID")
    template_id: str = Field(..., description="Template that generated the task")
    period_key: str = Field(..., description="Period the task belongs to")
    period_start: datetime = Field(..., description="First instant of the period")
    period_end: datetime = Field(..., description="Last instant of the period")
    assignee_id: str = Field(..., description="User the task is assigned to")
    collection_point_id: str | None = Field(default=None, description="Bound collection point, if any")
    title: str = Field(..., description="'{template name} [{period key}]'")
    description: str = Field(default="", description="Copied from the template")
    task_type: TaskType = Field(..., description="Copied from the template")
    priority: TaskPriority = Field(..., description="Copied from the template")
    due_at: datetime = Field(..., description="Deadline")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Lifecycle state")
    is_late: bool = Field(default=False, description="Created after its deadline had already passed")
    assignee_org_id: str | None = Field(default=None, description="Assignee's organization at creation time")
    assignee_dept_id: str | None = Field(default=None, description="Assignee's department at creation time")
    created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("created_at", "created"), description="Creation timestamp"
    )


class TaskCreate(BaseModel):
    """Row inserted when an occurrence is materialized."""

    template_id: str
    period_key: str
    period_start: datetime
    period_end: datetime
    assignee_id: str
    collection_point_id: str | None = None
    title: str
    description: str = ""
    task_type: TaskType
    priority: TaskPriority
    due_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    is_late: bool = False
    assignee_org_id: str | None = None
    assignee_dept_id: str | None = None
    created: datetime


class MaterializeResult(BaseModel):
    """Outcome of materializing one occurrence."""

    period_key: str
    created: int = 0
    skipped: int = 0


class ExecuteOptions(BaseModel):
    """Operator overrides for an on-demand execute."""

    assignee_ids: list[str] = Field(
        default_factory=list, description="Users who receive the tasks instead of the template's rule"
    )
    override_due_at: datetime | None = Field(default=None, description="Deadline written onto every task")

    @field_validator("override_due_at")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        """Naive deadlines are taken as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v


class TemplateRunResult(BaseModel):
    """Outcome of processing one template in a tick or an on-demand execute."""

    template_id: str
    occurrences: list[MaterializeResult] = Field(default_factory=list)
    error: str | None = None

    @computed_field
    @property
    def created(self) -> int:
        return sum(result.created for result in self.occurrences)

    @computed_field
    @property
    def skipped(self) -> int:
        return sum(result.skipped for result in self.occurrences)


class TickSummary(BaseModel):
    """Aggregate outcome of one scheduler tick."""

    processed: int = 0
    failed: int = 0
    created: int = 0
    skipped: int = 0
    results: list[TemplateRunResult] = Field(default_factory=list)
