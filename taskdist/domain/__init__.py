"""Domain models and DTOs."""

from taskdist.domain.assignment import AssigneePreview, Assignment, DistributionPreview, Resolution
from taskdist.domain.occurrence import Occurrence
from taskdist.domain.registry import CollectionPointType, PointRef, UserRef
from taskdist.domain.task import ExecuteOptions, MaterializeResult, Task, TaskStatus, TemplateRunResult, TickSummary
from taskdist.domain.template import (
    AssigneeMode,
    AssigneeSpec,
    ByCollectionPoint,
    ByDepartment,
    ByOrganization,
    CycleType,
    ManualAssignees,
    ScheduleMode,
    TaskPriority,
    TaskTemplate,
    TaskTemplateCreate,
    TaskTemplateUpdate,
    TaskType,
)


__all__ = [
    "AssigneeMode",
    "AssigneePreview",
    "AssigneeSpec",
    "Assignment",
    "ByCollectionPoint",
    "ByDepartment",
    "ByOrganization",
    "CollectionPointType",
    "CycleType",
    "DistributionPreview",
    "ExecuteOptions",
    "ManualAssignees",
    "MaterializeResult",
    "Occurrence",
    "PointRef",
    "Resolution",
    "ScheduleMode",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "TaskTemplate",
    "TaskTemplateCreate",
    "TaskTemplateUpdate",
    "TaskType",
    "TemplateRunResult",
    "TickSummary",
    "UserRef",
]
