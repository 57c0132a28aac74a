"""
Interval layout: tasks of one column group -> non-overlapping rectangles.

Tasks are packed greedily into sub-columns: sorted by start (stable), each task
takes the lowest-indexed sub-column whose last task has ended, or opens a new
one. Because the input is sorted by start this uses exactly as many
sub-columns as the largest set of mutually overlapping tasks.

All functions here are pure; they never touch the task store.
"""

from collections.abc import Iterable, Mapping
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from core.config import TASK_TYPE_EMOJIS
from models.calendar import CalendarSettings, DayBadge, Member, TaskPosition
from models.tasks import Task, TimeRange

UNASSIGNED = None


# =============================================================================
# TIME HELPERS
# =============================================================================


def to_local(value: datetime, timezone: str) -> datetime:
    """Convert aware datetimes to the calendar timezone; naive ones are already local."""
    if value.tzinfo is None:
        return value
    return value.astimezone(ZoneInfo(timezone))


def local_day(value: datetime, timezone: str) -> date:
    return to_local(value, timezone).date()


def _midnight(reference: datetime, day: date | None = None) -> datetime:
    if day is None:
        return reference.replace(hour=0, minute=0, second=0, microsecond=0)
    return datetime.combine(day, time(0), tzinfo=reference.tzinfo)


def _hour_offset(value: datetime, midnight: datetime) -> float:
    """Wall-clock hours between midnight and value (same tzinfo on both)."""
    return (value - midnight).total_seconds() / 3600


# =============================================================================
# LAYOUT
# =============================================================================


def effective_range(
    task: Task,
    settings: CalendarSettings,
    overrides: Mapping[str, TimeRange] | None = None,
    day: date | None = None,
) -> TimeRange:
    """
    Range actually used for layout, in local time.

    All-day tasks span the whole visible window of their day; an override
    (live gesture preview) replaces the stored range.
    """
    start = to_local(task.start_date, settings.timezone)
    end = to_local(task.end_date, settings.timezone)

    if task.is_all_day:
        midnight = _midnight(start, day)
        start = midnight + timedelta(hours=settings.visible_start_hour)
        end = midnight + timedelta(hours=settings.visible_end_hour)

    if overrides and task.id in overrides:
        override = overrides[task.id]
        start = to_local(override.start, settings.timezone)
        end = to_local(override.end, settings.timezone)

    return TimeRange(start, end)


def calculate_task_positions(
    tasks: Iterable[Task],
    settings: CalendarSettings,
    overrides: Mapping[str, TimeRange] | None = None,
    day: date | None = None,
) -> list[TaskPosition]:
    """
    Lay out one column group.

    Args:
        tasks: Tasks of the group (one member on one day).
        settings: Grid geometry (pixels per hour, visible hours, minimum
            height, gap between sub-columns).
        overrides: task_id -> TimeRange replacing stored ranges (live preview).
        day: When given, ranges are clipped to that day's visible window so
            multi-day tasks render as their slice of the day.

    Returns:
        Positions in placement order (start ascending, ties in input order).
    """
    ranges = []
    for task in tasks:
        time_range = effective_range(task, settings, overrides, day)
        if day is not None:
            time_range = _clip_to_day(time_range, day, settings)
            if time_range is None:
                continue
        ranges.append((task, time_range))

    ranges.sort(key=lambda item: item[1].start)

    # Greedy column assignment
    column_ends: list[datetime] = []
    placed = []
    for task, time_range in ranges:
        column_index = next(
            (i for i, column_end in enumerate(column_ends) if column_end <= time_range.start),
            None,
        )
        if column_index is None:
            column_index = len(column_ends)
            column_ends.append(time_range.end)
        else:
            column_ends[column_index] = time_range.end
        placed.append((task, time_range, column_index))

    column_count = max(len(column_ends), 1)
    gap = settings.column_gap_percent if column_count > 1 else 0.0
    width = (100 - (column_count - 1) * gap) / column_count

    positions = []
    for task, time_range, column_index in placed:
        midnight = _midnight(time_range.start)
        start_hour = _hour_offset(time_range.start, midnight)
        end_hour = _hour_offset(time_range.end, midnight)
        positions.append(
            TaskPosition(
                task_id=task.id,
                top=(start_hour - settings.visible_start_hour) * settings.pixels_per_hour,
                height=max((end_hour - start_hour) * settings.pixels_per_hour, settings.min_task_height),
                left=column_index * (width + gap),
                width=width,
                column_index=column_index,
                column_count=column_count,
                start=time_range.start,
                end=time_range.end,
            )
        )
    return positions


def _clip_to_day(time_range: TimeRange, day: date, settings: CalendarSettings) -> TimeRange | None:
    midnight = _midnight(time_range.start, day)
    window_start = midnight + timedelta(hours=settings.visible_start_hour)
    window_end = midnight + timedelta(hours=settings.visible_end_hour)
    start = max(time_range.start, window_start)
    end = min(time_range.end, window_end)
    if end <= start:
        return None
    return TimeRange(start, end)


# =============================================================================
# DAY GROUPING
# =============================================================================


def is_badge_task(task: Task) -> bool:
    """All-day special tasks are shown as header badges, not laid out."""
    return task.is_special and (task.should_split_daily or task.is_all_day)


def tasks_on_day(tasks: Iterable[Task], day: date, timezone: str) -> list[Task]:
    """Tasks whose range touches the given local day."""
    result = []
    for task in tasks:
        first = local_day(task.start_date, timezone)
        # An end exactly at midnight does not reach into that day
        end_local = to_local(task.end_date, timezone)
        last = end_local.date()
        if end_local.time() == time(0) and end_local > to_local(task.start_date, timezone):
            last -= timedelta(days=1)
        if first <= day <= last:
            result.append(task)
    return result


def group_tasks_by_member(
    tasks: Iterable[Task],
    members: Iterable[Member],
    day: date,
    timezone: str,
) -> dict[str | None, list[Task]]:
    """
    Split a day's tasks into one column group per member plus an unassigned group.

    A task assigned to several members appears in each of their groups.
    Badge tasks are excluded (see day_badges).
    """
    groups: dict[str | None, list[Task]] = {member.id: [] for member in members}
    groups[UNASSIGNED] = []

    for task in tasks_on_day(tasks, day, timezone):
        if is_badge_task(task):
            continue
        if task.is_unassigned:
            groups[UNASSIGNED].append(task)
            continue
        for member_id in task.assigned_members:
            if member_id in groups and member_id is not UNASSIGNED:
                groups[member_id].append(task)
    return groups


def day_badges(tasks: Iterable[Task], day: date, timezone: str) -> list[DayBadge]:
    """Header badges for the day: emoji plus the first name of the first assignee."""
    badges = []
    for task in tasks_on_day(tasks, day, timezone):
        if not is_badge_task(task):
            continue
        name = ""
        if task.assigned_members_data:
            name = task.assigned_members_data[0].name.split(" ")[0]
        badges.append(
            DayBadge(
                task_id=task.id,
                emoji=TASK_TYPE_EMOJIS.get(task.task_type, ""),
                name=name,
                type=task.task_type,
            )
        )
    return badges


def layout_day(
    tasks: Iterable[Task],
    members: Iterable[Member],
    day: date,
    settings: CalendarSettings,
    overrides: Mapping[str, TimeRange] | None = None,
) -> dict[str | None, list[TaskPosition]]:
    """Positions for every column group of a day, keyed by member id (None = unassigned)."""
    groups = group_tasks_by_member(tasks, members, day, settings.timezone)
    return {
        member_id: calculate_task_positions(group, settings, overrides, day)
        for member_id, group in groups.items()
    }
