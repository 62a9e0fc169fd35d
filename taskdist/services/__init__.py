from taskdist.services import (
    assignment_resolver,
    backfill_planner,
    distribution_previewer,
    schedule_calculator,
    task_materializer,
    task_service,
    template_scheduler,
    template_service,
)


__all__ = [
    "assignment_resolver",
    "backfill_planner",
    "distribution_previewer",
    "schedule_calculator",
    "task_materializer",
    "task_service",
    "template_scheduler",
    "template_service",
]
