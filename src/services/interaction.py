"""
Pointer interaction state machine for the calendar grid.

One gesture at a time: IDLE -> ACTIVE(move | resize_top | resize_bottom |
select) -> COMMITTED or CANCELLED. While active, the candidate range is exposed
as a layout override and a live "HH:MM - HH:MM" label. Everything here is
synchronous; committing only hands a CommitResult back to the caller.
"""

import logging
import math
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from core.config import LOCKED_STATUSES
from core.store import TaskStore
from models.calendar import (
    CalendarSettings,
    CommitResult,
    GestureType,
    InteractionSession,
    InteractionState,
    LiveLabel,
)
from models.tasks import Task, TimeRange
from services.layout import to_local

logger = logging.getLogger(__name__)

LABEL_OFFSET_Y = 40.0

_UNCHANGED = object()


def snap_minutes(minutes: float, step: int) -> int:
    """Round to the nearest step, halves away from -inf (matches the grid's rounding)."""
    return int(math.floor(minutes / step + 0.5) * step)


def format_range(time_range: TimeRange) -> str:
    return f"{time_range.start:%H:%M} - {time_range.end:%H:%M}"


def can_edit(task: Task, store: TaskStore | None = None) -> bool:
    """Completed, unconfirmed (temp) and deleting tasks cannot be dragged."""
    if task.status in LOCKED_STATUSES or task.is_temporary:
        return False
    if store is not None and (store.is_blacklisted(task.id) or task.id not in store):
        return False
    return True


class InteractionController:
    """Tracks the active gesture and turns pointer events into a committed range."""

    def __init__(self, store: TaskStore, settings: CalendarSettings):
        self.store = store
        self.settings = settings
        self.state = InteractionState.IDLE
        self.session: InteractionSession | None = None

    @property
    def is_active(self) -> bool:
        return self.state == InteractionState.ACTIVE

    # =========================================================================
    # GESTURE START
    # =========================================================================

    def pointer_down(
        self,
        task_id: str,
        gesture_type: GestureType,
        pointer_y: float,
        pointer_x: float = 0.0,
        member_id: str | None = None,
    ) -> bool:
        """
        Start a move or resize on a task. Returns False if the task is not editable
        or another gesture is already active.
        """
        if self.is_active or gesture_type == GestureType.SELECT:
            return False
        task = self.store.get(task_id)
        if task is None or not can_edit(task, self.store):
            logger.debug("pointer_down ignored for %s", task_id)
            return False

        original = TimeRange(
            to_local(task.start_date, self.settings.timezone),
            to_local(task.end_date, self.settings.timezone),
        )
        self.session = InteractionSession(
            task_id=task_id,
            gesture_type=gesture_type,
            start_pointer_y=pointer_y,
            original_range=original,
            live_range=original,
            source_member_id=member_id,
            target_member_id=member_id,
            pointer_x=pointer_x,
            pointer_y=pointer_y,
        )
        self.state = InteractionState.ACTIVE
        return True

    def begin_selection(
        self,
        day: date,
        grid_y: float,
        pointer_y: float | None = None,
        pointer_x: float = 0.0,
        member_id: str | None = None,
    ) -> bool:
        """
        Start a click-drag selection on empty grid space.

        grid_y is the offset from the top of the grid; the start slot is the
        hour under the pointer with minutes snapped to the grid step.
        """
        if self.is_active:
            return False
        settings = self.settings
        total_minutes = grid_y / settings.pixels_per_hour * 60
        hour = math.floor(total_minutes / 60) + settings.visible_start_hour
        minute = snap_minutes(total_minutes % 60, settings.snap_minutes)

        midnight = datetime.combine(day, time(0), tzinfo=ZoneInfo(settings.timezone))
        start = midnight + timedelta(hours=hour, minutes=minute)
        anchor = TimeRange(start, start)
        self.session = InteractionSession(
            task_id=None,
            gesture_type=GestureType.SELECT,
            start_pointer_y=grid_y if pointer_y is None else pointer_y,
            original_range=anchor,
            live_range=anchor,
            source_member_id=member_id,
            target_member_id=member_id,
            pointer_x=pointer_x,
            pointer_y=grid_y if pointer_y is None else pointer_y,
        )
        self.state = InteractionState.ACTIVE
        return True

    # =========================================================================
    # GESTURE UPDATE
    # =========================================================================

    def pointer_move(self, pointer_y: float, pointer_x: float = 0.0, member_id=_UNCHANGED) -> TimeRange | None:
        """Update the live range from the pointer position; None when idle."""
        if not self.is_active:
            return None
        session = self.session
        session.pointer_x = pointer_x
        session.pointer_y = pointer_y
        if member_id is not _UNCHANGED and session.gesture_type == GestureType.MOVE:
            session.target_member_id = member_id

        delta_minutes = (pointer_y - session.start_pointer_y) / self.settings.pixels_per_hour * 60
        delta = timedelta(minutes=snap_minutes(delta_minutes, self.settings.snap_minutes))

        if session.gesture_type == GestureType.SELECT:
            session.live_range = self._select_range(session.original_range.start, delta)
        elif session.gesture_type == GestureType.MOVE:
            session.live_range = self._move_range(session.original_range, delta)
        else:
            session.live_range = self._resize_range(session.original_range, delta, session.gesture_type)
        return session.live_range

    def _business_window(self, reference: datetime) -> tuple[datetime, datetime]:
        midnight = reference.replace(hour=0, minute=0, second=0, microsecond=0)
        return (
            midnight + timedelta(hours=self.settings.business_start_hour),
            midnight + timedelta(hours=self.settings.business_end_hour),
        )

    def _move_range(self, original: TimeRange, delta: timedelta) -> TimeRange:
        day_start, day_end = self._business_window(original.start)
        duration = original.duration
        start = original.start + delta
        if start + duration > day_end:
            start = day_end - duration
        if start < day_start:
            start = day_start
        return TimeRange(start, start + duration)

    def _resize_range(self, original: TimeRange, delta: timedelta, gesture_type: GestureType) -> TimeRange:
        day_start, day_end = self._business_window(original.start)
        min_duration = timedelta(minutes=self.settings.min_duration_minutes)
        max_duration = timedelta(hours=self.settings.max_duration_hours)
        start, end = original.start, original.end

        if gesture_type == GestureType.RESIZE_TOP:
            start = max(day_start, min(end - min_duration, start + delta))
        else:
            end = max(start + min_duration, min(day_end, end + delta))

        # Shrink from the dragged edge
        if end - start > max_duration:
            if gesture_type == GestureType.RESIZE_TOP:
                start = end - max_duration
            else:
                end = start + max_duration
        return TimeRange(start, end)

    def _select_range(self, anchor: datetime, delta: timedelta) -> TimeRange:
        if delta < timedelta(0):
            return TimeRange(anchor + delta, anchor)
        return TimeRange(anchor, anchor + delta)

    # =========================================================================
    # GESTURE END
    # =========================================================================

    def pointer_up(self) -> CommitResult | None:
        """
        Commit the active gesture.

        Returns None when idle (e.g. after Escape) or when a move/resize ended
        where it started.
        """
        if not self.is_active:
            return None
        session = self.session
        self.session = None
        self.state = InteractionState.COMMITTED

        live = session.live_range
        if session.gesture_type == GestureType.SELECT:
            minimum = timedelta(minutes=self.settings.min_selection_minutes)
            if live.duration < minimum:
                live = TimeRange(live.start, live.start + minimum)
        elif live == session.original_range and session.source_member_id == session.target_member_id:
            return None

        return CommitResult(
            gesture_type=session.gesture_type,
            task_id=session.task_id,
            start_date=live.start,
            end_date=live.end,
            source_member_id=session.source_member_id,
            target_member_id=session.target_member_id,
        )

    def key_down(self, key: str) -> bool:
        """Escape cancels the active gesture; returns True if something was cancelled."""
        if key == "Escape" and self.is_active:
            self.cancel()
            return True
        return False

    def cancel(self) -> None:
        self.session = None
        self.state = InteractionState.CANCELLED

    # =========================================================================
    # PREVIEW
    # =========================================================================

    def overrides(self) -> dict[str, TimeRange]:
        """Layout overrides for the live preview."""
        if self.is_active and self.session.task_id is not None:
            return {self.session.task_id: self.session.live_range}
        return {}

    @property
    def live_label(self) -> LiveLabel | None:
        if not self.is_active:
            return None
        session = self.session
        return LiveLabel(
            text=format_range(session.live_range),
            x=session.pointer_x,
            y=session.pointer_y - LABEL_OFFSET_Y,
        )

    def selection_overlay(self) -> tuple[float, float] | None:
        """(top, height) in px of the selection rectangle."""
        if not self.is_active or self.session.gesture_type != GestureType.SELECT:
            return None
        live = self.session.live_range
        midnight = live.start.replace(hour=0, minute=0, second=0, microsecond=0)
        start_hour = (live.start - midnight).total_seconds() / 3600
        top = (start_hour - self.settings.visible_start_hour) * self.settings.pixels_per_hour
        height = live.duration.total_seconds() / 3600 * self.settings.pixels_per_hour
        return top, height
