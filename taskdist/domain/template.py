"""Task template domain models, enums, and save-time validation."""

import json
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from taskdist.core.config import constants, settings
from taskdist.core.errors import TemplateValidationError
from taskdist.domain.registry import CollectionPointType


class TaskType(StrEnum):
    """Kind of work a template generates."""

    COLLECTION = "COLLECTION"
    REPORT = "REPORT"
    RESEARCH = "RESEARCH"
    VERIFICATION = "VERIFICATION"
    OTHER = "OTHER"


class TaskPriority(StrEnum):
    """Priority copied onto every generated task."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class CycleType(StrEnum):
    """Recurrence period of a template."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    ONE_TIME = "ONE_TIME"


class ScheduleMode(StrEnum):
    """Where a task's deadline comes from."""

    POINT_DEFAULT = "POINT_DEFAULT"  # run time + deadline offset
    TEMPLATE_OVERRIDE = "TEMPLATE_OVERRIDE"  # template's due day/minute


class AssigneeMode(StrEnum):
    """Discriminator values of the assignment payload."""

    MANUAL = "MANUAL"
    BY_COLLECTION_POINT = "BY_COLLECTION_POINT"
    BY_DEPARTMENT = "BY_DEPARTMENT"
    BY_ORGANIZATION = "BY_ORGANIZATION"


class ManualAssignees(BaseModel):
    """Fixed list of assignees, no point binding."""

    mode: Literal["MANUAL"] = "MANUAL"
    assignee_ids: list[str] = Field(..., min_length=1, description="User IDs receiving a task each period")


class ByCollectionPoint(BaseModel):
    """Owners of collection points, one task per (owner, point) pair."""

    mode: Literal["BY_COLLECTION_POINT"] = "BY_COLLECTION_POINT"
    collection_point_ids: list[str] = Field(default_factory=list, description="Explicit point scope")
    target_point_types: list[CollectionPointType] = Field(
        default_factory=list, description="Scope by point type when no explicit IDs are given"
    )

    @model_validator(mode="after")
    def check_single_scope(self) -> "ByCollectionPoint":
        """Exactly one of collection_point_ids / target_point_types must be non-empty."""
        if bool(self.collection_point_ids) == bool(self.target_point_types):
            msg = "Specify exactly one of collection_point_ids or target_point_types"
            raise ValueError(msg)
        return self


class ByDepartment(BaseModel):
    """Active members of the listed departments."""

    mode: Literal["BY_DEPARTMENT"] = "BY_DEPARTMENT"
    department_ids: list[str] = Field(..., min_length=1, description="Department IDs to expand")


class ByOrganization(BaseModel):
    """Active members of the listed organizations."""

    mode: Literal["BY_ORGANIZATION"] = "BY_ORGANIZATION"
    organization_ids: list[str] = Field(..., min_length=1, description="Organization IDs to expand")


AssigneeSpec = Annotated[
    ManualAssignees | ByCollectionPoint | ByDepartment | ByOrganization,
    Field(discriminator="mode"),
]


def _parse_json_payload(value: Any) -> Any:  # noqa: ANN401
    """Accept the assignment column's stored JSON text as well as dicts."""
    if isinstance(value, str):
        return json.loads(value)
    return value


def _validate_timezone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as e:
        msg = f"Unknown timezone: {value}"
        raise ValueError(msg) from e
    return value


class TemplateFields(BaseModel):
    """Fields shared by stored templates and create payloads."""

    name: str = Field(..., min_length=1, description="Template name, prefix of every task title")
    description: str = Field(default="", description="Free-form description")
    task_type: TaskType = Field(..., description="Kind of work generated")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Priority of generated tasks")
    cycle_type: CycleType = Field(..., description="Recurrence period")
    schedule_mode: ScheduleMode = Field(default=ScheduleMode.TEMPLATE_OVERRIDE, description="Deadline source")
    timezone: str = Field(
        default_factory=lambda: settings.default_timezone,
        description="IANA zone the wall-clock fields are expressed in",
    )
    run_at_minute: int = Field(
        default=540, ge=0, le=constants.MINUTES_IN_DAY - 1, description="Minute of day tasks are generated"
    )
    due_at_minute: int = Field(
        default=1080, ge=0, le=constants.MINUTES_IN_DAY - 1, description="Minute of day tasks are due"
    )
    run_day_of_week: int = Field(default=1, ge=1, le=7, description="ISO weekday of generation (1 = Monday)")
    due_day_of_week: int = Field(default=7, ge=1, le=7, description="ISO weekday tasks are due")
    run_day_of_month: int = Field(default=1, ge=0, le=31, description="Day of month of generation, 0 = last day")
    due_day_of_month: int = Field(default=0, ge=0, le=31, description="Day of month tasks are due, 0 = last day")
    deadline_offset_hours: int = Field(default=24, ge=1, description="Hours from run to due in POINT_DEFAULT mode")
    active_from: datetime | None = Field(default=None, description="Start of the active window")
    active_until: datetime | None = Field(default=None, description="End of the active window")
    allow_late: bool = Field(default=True, description="Backfill every missed period instead of only the latest")
    max_backfill_periods: int = Field(
        default=3, ge=0, le=constants.MAX_BACKFILL_PERIODS, description="Cap on missed periods generated per run"
    )
    assignment: AssigneeSpec = Field(..., description="Who receives the generated tasks")

    @field_validator("assignment", mode="before")
    @classmethod
    def parse_assignment(cls, v: Any) -> Any:  # noqa: ANN401
        """Decode assignment JSON stored in the database."""
        return _parse_json_payload(v)

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        """Reject zones the tz database does not know."""
        return _validate_timezone(v)

    @model_validator(mode="after")
    def localize_window(self) -> "TemplateFields":
        """Naive window bounds are wall-clock times in the template's zone."""
        if self.active_from is not None and self.active_from.tzinfo is None:
            self.active_from = self.active_from.replace(tzinfo=self.zone)
        if self.active_until is not None and self.active_until.tzinfo is None:
            self.active_until = self.active_until.replace(tzinfo=self.zone)
        return self

    @property
    def zone(self) -> ZoneInfo:
        """Timezone object for wall-clock computations."""
        return ZoneInfo(self.timezone)


class TaskTemplate(TemplateFields):
    """Stored task template."""

    id: str = Field(..., description="Unique template ID")
    is_active: bool = Field(default=True, description="Whether the scheduler processes this template")
    last_run_at: datetime | None = Field(default=None, description="Period start of the newest materialized period")
    next_run_at: datetime | None = Field(default=None, description="Run time of the next pending occurrence")
    created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("created_at", "created"), description="Creation timestamp"
    )
    updated_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("updated_at", "updated"), description="Last update timestamp"
    )


class TaskTemplateCreate(TemplateFields):
    """Payload for creating a template."""

    is_active: bool = Field(default=True, description="Whether the scheduler processes this template")


class TaskTemplateUpdate(BaseModel):
    """Partial update payload; unset fields keep their stored values."""

    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    task_type: TaskType | None = None
    priority: TaskPriority | None = None
    cycle_type: CycleType | None = None
    schedule_mode: ScheduleMode | None = None
    timezone: str | None = None
    run_at_minute: int | None = Field(default=None, ge=0, le=constants.MINUTES_IN_DAY - 1)
    due_at_minute: int | None = Field(default=None, ge=0, le=constants.MINUTES_IN_DAY - 1)
    run_day_of_week: int | None = Field(default=None, ge=1, le=7)
    due_day_of_week: int | None = Field(default=None, ge=1, le=7)
    run_day_of_month: int | None = Field(default=None, ge=0, le=31)
    due_day_of_month: int | None = Field(default=None, ge=0, le=31)
    deadline_offset_hours: int | None = Field(default=None, ge=1)
    active_from: datetime | None = None
    active_until: datetime | None = None
    allow_late: bool | None = None
    max_backfill_periods: int | None = Field(default=None, ge=0, le=constants.MAX_BACKFILL_PERIODS)
    assignment: AssigneeSpec | None = None
    is_active: bool | None = None


def _month_day_rank(day: int) -> int:
    """Day 0 means end of month, which sorts after every explicit day."""
    return 32 if day == 0 else day


def validate_template_rules(template: TemplateFields) -> None:
    """Check cross-field rules that field constraints cannot express.

    Raises:
        TemplateValidationError: If the template would generate inverted or unresolvable work
    """
    if template.cycle_type == CycleType.WEEKLY:
        run_key = (template.run_day_of_week, template.run_at_minute)
        due_key = (template.due_day_of_week, template.due_at_minute)
        if due_key < run_key:
            raise TemplateValidationError("Weekly due day/time must not precede the run day/time")

    if template.cycle_type == CycleType.MONTHLY:
        run_key = (_month_day_rank(template.run_day_of_month), template.run_at_minute)
        due_key = (_month_day_rank(template.due_day_of_month), template.due_at_minute)
        if due_key < run_key:
            raise TemplateValidationError("Monthly due day/time must not precede the run day/time")

    if template.task_type == TaskType.COLLECTION and not isinstance(template.assignment, ByCollectionPoint):
        raise TemplateValidationError("COLLECTION templates must be assigned by collection point")

    if template.active_from and template.active_until and template.active_until < template.active_from:
        raise TemplateValidationError("active_until must not precede active_from")
