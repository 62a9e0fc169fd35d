"""Calendar math for task templates.

Every function here is pure: callers pass the reference instant explicitly and
nothing reads the wall clock. All wall-clock fields of a template (run/due
minute, weekday, month day) are interpreted in the template's own timezone.
Naive datetimes passed in are taken to be in that timezone too.
"""

import calendar
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from taskdist.core.config import constants
from taskdist.domain.occurrence import Occurrence
from taskdist.domain.template import CycleType, ScheduleMode, TaskTemplate


_TICK = timedelta(microseconds=1)


def resolve_month_day(day: int, year: int, month: int) -> int:
    """Clamp a configured day of month to a real date.

    Day 0 means the last day of the month; days past the month's end also
    resolve to the last day (31 in April -> 30, 30 in February -> 28 or 29).
    """
    last_day = calendar.monthrange(year, month)[1]
    if day == 0 or day > last_day:
        return last_day
    return day


def _as_local(moment: datetime, zone: ZoneInfo) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=zone)
    return moment.astimezone(zone)


def _at_minute(day: date, minute: int, zone: ZoneInfo) -> datetime:
    return datetime.combine(day, time(), tzinfo=zone) + timedelta(minutes=minute)


def _next_month(year: int, month: int) -> tuple[int, int]:
    return (year + 1, 1) if month == 12 else (year, month + 1)  # noqa: PLR2004


def _period_bounds(cycle_type: CycleType, day: date) -> tuple[date, date]:
    """First day of the period containing ``day`` and first day of the next one."""
    if cycle_type == CycleType.WEEKLY:
        week_start = day - timedelta(days=day.isoweekday() - 1)
        return week_start, week_start + timedelta(days=constants.DAYS_IN_WEEK)
    if cycle_type == CycleType.MONTHLY:
        year, month = _next_month(day.year, day.month)
        return day.replace(day=1), date(year, month, 1)
    return day, day + timedelta(days=1)


def period_key(cycle_type: CycleType, period_start: date) -> str:
    """Human-readable period identifier, part of the task idempotency key.

    Weekly keys use the ISO week-numbering year, so the week of 2024-12-30 is ``2025-W01``.
    """
    if cycle_type == CycleType.WEEKLY:
        iso = period_start.isocalendar()
        return f"{iso.year}-W{iso.week:02d}"
    if cycle_type == CycleType.MONTHLY:
        return f"{period_start.year:04d}-{period_start.month:02d}"
    return period_start.isoformat()


def _run_and_due(template: TaskTemplate, start: date) -> tuple[datetime, datetime]:
    zone = template.zone

    if template.cycle_type == CycleType.WEEKLY:
        run_at = _at_minute(start + timedelta(days=template.run_day_of_week - 1), template.run_at_minute, zone)
        due_at = _at_minute(start + timedelta(days=template.due_day_of_week - 1), template.due_at_minute, zone)
        if due_at < run_at:
            due_at += timedelta(days=constants.DAYS_IN_WEEK)
        return run_at, due_at

    if template.cycle_type == CycleType.MONTHLY:
        run_day = resolve_month_day(template.run_day_of_month, start.year, start.month)
        due_day = resolve_month_day(template.due_day_of_month, start.year, start.month)
        run_at = _at_minute(start.replace(day=run_day), template.run_at_minute, zone)
        due_at = _at_minute(start.replace(day=due_day), template.due_at_minute, zone)
        if due_at < run_at:
            year, month = _next_month(start.year, start.month)
            due_day = resolve_month_day(template.due_day_of_month, year, month)
            due_at = _at_minute(date(year, month, due_day), template.due_at_minute, zone)
        return run_at, due_at

    run_at = _at_minute(start, template.run_at_minute, zone)
    due_at = _at_minute(start, template.due_at_minute, zone)
    if due_at < run_at:
        due_at += timedelta(days=1)
    return run_at, due_at


def _one_time_occurrence(template: TaskTemplate, run_at: datetime) -> Occurrence:
    start, next_start = _period_bounds(CycleType.ONE_TIME, run_at.date())
    zone = template.zone
    return Occurrence(
        template_id=template.id,
        period_start=_at_minute(start, 0, zone),
        period_end=_at_minute(next_start, 0, zone) - _TICK,
        period_key=period_key(CycleType.ONE_TIME, start),
        run_at=run_at,
        due_at=run_at + timedelta(hours=template.deadline_offset_hours),
    )


def occurrence_for_period(template: TaskTemplate, anchor: datetime) -> Occurrence:
    """Occurrence of the period that contains ``anchor``.

    For ONE_TIME templates the period is the anchor's day and the run time is
    the anchor itself.
    """
    zone = template.zone
    local = _as_local(anchor, zone)

    if template.cycle_type == CycleType.ONE_TIME:
        return _one_time_occurrence(template, local)

    start, next_start = _period_bounds(template.cycle_type, local.date())
    run_at, due_at = _run_and_due(template, start)
    return Occurrence(
        template_id=template.id,
        period_start=_at_minute(start, 0, zone),
        period_end=_at_minute(next_start, 0, zone) - _TICK,
        period_key=period_key(template.cycle_type, start),
        run_at=run_at,
        due_at=due_at,
    )


def _within_window(template: TaskTemplate, occurrence: Occurrence) -> bool:
    if template.active_from is not None and occurrence.run_at < template.active_from:
        return False
    return not (template.active_until is not None and occurrence.run_at > template.active_until)


def following_occurrence(template: TaskTemplate, occurrence: Occurrence) -> Occurrence | None:
    """Occurrence of the period after ``occurrence``, or None past the active window."""
    if template.cycle_type == CycleType.ONE_TIME:
        return None
    following = occurrence_for_period(template, occurrence.period_end + _TICK)
    if template.active_until is not None and following.run_at > template.active_until:
        return None
    return following


def preceding_occurrence(template: TaskTemplate, occurrence: Occurrence) -> Occurrence | None:
    """Occurrence of the period before ``occurrence``, or None before the active window."""
    if template.cycle_type == CycleType.ONE_TIME:
        return None
    preceding = occurrence_for_period(template, occurrence.period_start - _TICK)
    if template.active_from is not None and preceding.run_at < template.active_from:
        return None
    return preceding


def next_occurrence(template: TaskTemplate, reference: datetime) -> Occurrence | None:
    """First occurrence whose run time is at or after ``reference``.

    References before ``active_from`` are clamped to it. ONE_TIME templates have
    exactly one occurrence, at ``active_from`` (or at the reference when no
    window start is set), and none once they have run.

    Returns:
        The occurrence, or None when it would fall outside the active window
    """
    zone = template.zone
    reference = _as_local(reference, zone)

    if template.cycle_type == CycleType.ONE_TIME:
        if template.last_run_at is not None:
            return None
        run_at = _as_local(template.active_from, zone) if template.active_from is not None else reference
        occurrence = _one_time_occurrence(template, run_at)
        return occurrence if _within_window(template, occurrence) else None

    if template.active_from is not None and reference < template.active_from:
        reference = _as_local(template.active_from, zone)

    occurrence = occurrence_for_period(template, reference)
    if occurrence.run_at < reference:
        occurrence = occurrence_for_period(template, occurrence.period_end + _TICK)

    return occurrence if _within_window(template, occurrence) else None


def current_period_occurrence(template: TaskTemplate, now: datetime) -> Occurrence | None:
    """Occurrence an operator acts on right now.

    This is the period containing ``now``, even if its run time is still ahead.
    A period whose run time precedes the active window is replaced by the
    window's first occurrence.
    ONE_TIME templates defer to next_occurrence.
    """
    if template.cycle_type == CycleType.ONE_TIME:
        return next_occurrence(template, now)

    now = _as_local(now, template.zone)
    if template.active_from is not None and now < template.active_from:
        return next_occurrence(template, now)

    occurrence = occurrence_for_period(template, now)
    if template.active_from is not None and occurrence.run_at < template.active_from:
        return next_occurrence(template, template.active_from)
    if template.active_until is not None and occurrence.run_at > template.active_until:
        return None
    return occurrence


def effective_due_at(template: TaskTemplate, occurrence: Occurrence) -> datetime:
    """Deadline written onto tasks of an occurrence.

    Template-driven schedules use the occurrence's due time; point-inherited
    schedules use the run time plus the template's deadline offset.
    """
    if template.schedule_mode == ScheduleMode.POINT_DEFAULT:
        return occurrence.run_at + timedelta(hours=template.deadline_offset_hours)
    return occurrence.due_at
