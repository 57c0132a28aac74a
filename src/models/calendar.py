"""
Data models for the calendar grid: settings, members, positions and
interaction sessions.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator

from core.config import (
    BUSINESS_END_HOUR,
    BUSINESS_START_HOUR,
    CALENDAR_TIMEZONE,
    COLUMN_GAP_PERCENT,
    DEFAULT_PIXELS_PER_HOUR,
    MAX_DURATION_HOURS,
    MIN_DURATION_MINUTES,
    MIN_SELECTION_MINUTES,
    MIN_TASK_HEIGHT_PX,
    SNAP_MINUTES,
    VISIBLE_END_HOUR,
    VISIBLE_START_HOUR,
)
from models.tasks import TimeRange


class CalendarSettings(BaseModel):
    """Grid geometry and scheduling rules; seeded from core.config."""

    model_config = ConfigDict(frozen=True)

    visible_start_hour: int = VISIBLE_START_HOUR
    visible_end_hour: int = VISIBLE_END_HOUR
    pixels_per_hour: float = DEFAULT_PIXELS_PER_HOUR
    min_task_height: float = MIN_TASK_HEIGHT_PX
    column_gap_percent: float = COLUMN_GAP_PERCENT
    timezone: str = CALENDAR_TIMEZONE

    business_start_hour: int = BUSINESS_START_HOUR
    business_end_hour: int = BUSINESS_END_HOUR
    snap_minutes: int = SNAP_MINUTES
    min_duration_minutes: int = MIN_DURATION_MINUTES
    max_duration_hours: float = MAX_DURATION_HOURS
    min_selection_minutes: int = MIN_SELECTION_MINUTES

    @model_validator(mode="after")
    def _check_hours(self):
        if not 0 <= self.visible_start_hour < self.visible_end_hour <= 24:
            raise ValueError("visible hour range must satisfy 0 <= start < end <= 24")
        if not 0 <= self.business_start_hour < self.business_end_hour <= 24:
            raise ValueError("business hours must satisfy 0 <= start < end <= 24")
        if self.pixels_per_hour <= 0:
            raise ValueError("pixels_per_hour must be positive")
        if self.snap_minutes <= 0 or self.min_duration_minutes <= 0:
            raise ValueError("snap and minimum duration must be positive")
        if not 0 <= self.column_gap_percent < 100:
            raise ValueError("column_gap_percent must be within [0, 100)")
        return self

    @property
    def visible_hours(self) -> int:
        return self.visible_end_hour - self.visible_start_hour

    def with_container_height(self, container_height: float) -> "CalendarSettings":
        """Derive pixels-per-hour from the rendered grid height."""
        if container_height <= 0:
            return self
        return self.model_copy(update={"pixels_per_hour": container_height / self.visible_hours})


@dataclass(frozen=True)
class Member:
    id: str
    name: str
    email: str | None = None
    teams: tuple[str, ...] = ()


@dataclass(frozen=True)
class TaskPosition:
    """Rectangle for one task, relative to its column group."""

    task_id: str
    top: float  # px from the top of the grid
    height: float  # px
    left: float  # % of the column group width
    width: float  # % of the column group width
    column_index: int
    column_count: int
    start: datetime  # effective range used for layout
    end: datetime


@dataclass(frozen=True)
class DayBadge:
    """Header badge for an all-day special task (holiday, remote, school)."""

    task_id: str
    emoji: str
    name: str
    type: str


class GestureType(str, Enum):
    MOVE = "move"
    RESIZE_TOP = "resize_top"
    RESIZE_BOTTOM = "resize_bottom"
    SELECT = "select"


class InteractionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


@dataclass
class InteractionSession:
    """Transient state while a gesture is active."""

    task_id: str | None  # None for slot selection
    gesture_type: GestureType
    start_pointer_y: float
    original_range: TimeRange
    live_range: TimeRange
    source_member_id: str | None = None
    target_member_id: str | None = None
    pointer_x: float = 0.0
    pointer_y: float = 0.0


@dataclass(frozen=True)
class LiveLabel:
    """Time label following the pointer during a gesture."""

    text: str
    x: float
    y: float


@dataclass(frozen=True)
class CommitResult:
    """Final outcome of a committed gesture."""

    gesture_type: GestureType
    task_id: str | None
    start_date: datetime
    end_date: datetime
    source_member_id: str | None = None
    target_member_id: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def member_changed(self) -> bool:
        return self.source_member_id != self.target_member_id
