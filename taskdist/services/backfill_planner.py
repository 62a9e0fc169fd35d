"""Decide which occurrences a template still owes.

Pure functions over a template, its last run, and an explicit ``now``.
"""

from datetime import datetime

from taskdist.domain.occurrence import Occurrence
from taskdist.domain.template import CycleType, TaskTemplate
from taskdist.services import schedule_calculator


def _first_occurrence(template: TaskTemplate, now: datetime) -> Occurrence | None:
    """First occurrence of a template that has never run.

    Counted from the active window's start, or from the template's creation
    when it has no window start.
    """
    start = template.active_from or template.created_at or now
    return schedule_calculator.next_occurrence(template, start)


def _ran_during(last_run_at: datetime | None, occurrence: Occurrence) -> bool:
    return last_run_at is not None and occurrence.period_start <= last_run_at


def current_occurrence(template: TaskTemplate, last_run_at: datetime | None, now: datetime) -> Occurrence | None:
    """Most recent occurrence that is due at ``now`` and newer than ``last_run_at``'s period."""
    if template.cycle_type == CycleType.ONE_TIME:
        if last_run_at is not None:
            return None
        occurrence = schedule_calculator.next_occurrence(template, now)
        return occurrence if occurrence is not None and occurrence.run_at <= now else None

    occurrence = schedule_calculator.occurrence_for_period(template, now)
    if occurrence.run_at > now:
        occurrence = schedule_calculator.preceding_occurrence(template, occurrence)

    if occurrence is None or _ran_during(last_run_at, occurrence):
        return None
    if template.active_from is not None and occurrence.run_at < template.active_from:
        return None
    if template.active_until is not None and occurrence.run_at > template.active_until:
        return None
    return occurrence


def missed_occurrences(template: TaskTemplate, last_run_at: datetime | None, now: datetime) -> list[Occurrence]:
    """Occurrences owed since ``last_run_at``, oldest first.

    - Never run: only the first occurrence of the active window, once it is due.
    - ``max_backfill_periods`` of 0: nothing is owed.
    - ``allow_late`` off: at most the single most recent due occurrence.
    - Otherwise every due period after ``last_run_at``'s period, capped at
      ``max_backfill_periods`` entries.
    """
    if last_run_at is None:
        first = _first_occurrence(template, now)
        return [first] if first is not None and first.run_at <= now else []

    if template.cycle_type == CycleType.ONE_TIME:
        return []

    limit = template.max_backfill_periods
    if limit == 0:
        return []

    if not template.allow_late:
        latest = current_occurrence(template, last_run_at, now)
        return [latest] if latest is not None else []

    occurrence = schedule_calculator.following_occurrence(
        template, schedule_calculator.occurrence_for_period(template, last_run_at)
    )
    if occurrence is not None and template.active_from is not None and occurrence.run_at < template.active_from:
        occurrence = schedule_calculator.next_occurrence(template, template.active_from)

    missed: list[Occurrence] = []
    while occurrence is not None and occurrence.run_at <= now and len(missed) < limit:
        missed.append(occurrence)
        occurrence = schedule_calculator.following_occurrence(template, occurrence)
    return missed
