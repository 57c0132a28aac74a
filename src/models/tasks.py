"""
Data models for tasks and task mutations.

Tasks are immutable: every write produces a new instance, so a stored snapshot
stays byte-equal to what it was when it was taken.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from core.config import SPECIAL_TASK_TYPES, TEMP_ID_PREFIX

TaskType = Literal["task", "holiday", "remote", "school"]
MutationKind = Literal["create", "update", "delete"]


@dataclass(frozen=True)
class TimeRange:
    """Half-open [start, end) time window."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "TimeRange") -> bool:
        return self.start < other.end and other.start < self.end


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class MemberRef(_WireModel):
    id: str
    name: str
    email: str | None = None
    teams: tuple[str, ...] = ()


class ProjectRef(_WireModel):
    id: str
    name: str
    status: str | None = None


class ClientRef(_WireModel):
    id: str
    name: str


class TaskConflict(_WireModel):
    """Conflict reported by the server for a task (overlap, holiday...)."""

    type: str
    message: str
    member_id: str | None = None
    member_name: str | None = None
    conflicting_task_id: str | None = None
    conflicting_task_title: str | None = None
    severity: str = "low"


class Task(_WireModel):
    """Time-bounded task shown on the calendar grid."""

    id: str
    title: str = ""
    start_date: datetime
    end_date: datetime
    assigned_members: tuple[str, ...] = ()
    task_type: TaskType = "task"
    status: str = "not_started"
    is_all_day: bool = False
    should_split_daily: bool = False
    project_id: str | None = None
    client_id: str | None = None
    description: str | None = None
    notes: str | None = None
    project_data: ProjectRef | None = None
    client_data: ClientRef | None = None
    assigned_members_data: tuple[MemberRef, ...] = ()
    conflicts: tuple[TaskConflict, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_window(self):
        if self.end_date <= self.start_date and not self.is_all_day:
            raise ValueError("end_date must be after start_date")
        return self

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(self.start_date, self.end_date)

    @property
    def is_temporary(self) -> bool:
        return self.id.startswith(TEMP_ID_PREFIX)

    @property
    def is_special(self) -> bool:
        return self.task_type in SPECIAL_TASK_TYPES

    @property
    def is_unassigned(self) -> bool:
        return not self.assigned_members


class TaskCreatePayload(_WireModel):
    """Fields sent to the server when creating a task, plus enriched display data."""

    title: str
    start_date: datetime
    end_date: datetime
    status: str = "not_started"
    project_id: str | None = None
    assigned_members: tuple[str, ...] = ()
    client_id: str | None = None
    teams: tuple[str, ...] = ()
    description: str | None = None
    notes: str | None = None
    task_type: TaskType = "task"
    add_to_calendar: bool | None = None

    project_data: ProjectRef | None = None
    client_data: ClientRef | None = None
    assigned_members_data: tuple[MemberRef, ...] = ()

    @model_validator(mode="after")
    def _check_window(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class TaskUpdate(_WireModel):
    """Partial update; only fields explicitly set are merged and sent."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    assigned_members: tuple[str, ...] | None = None
    assigned_members_data: tuple[MemberRef, ...] | None = None
    project_id: str | None = None
    project_data: ProjectRef | None = None
    client_id: str | None = None
    client_data: ClientRef | None = None
    status: str | None = None
    description: str | None = None
    notes: str | None = None
    task_type: TaskType | None = None

    @model_validator(mode="after")
    def _check_window(self):
        if self.start_date and self.end_date and self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self

    def changes(self) -> dict[str, Any]:
        """Explicitly-set fields as model objects (suitable for model_copy)."""
        return {name: getattr(self, name) for name in self.model_fields_set}


@dataclass
class PendingMutation:
    """Bookkeeping for one in-flight optimistic write."""

    task_id: str
    kind: MutationKind
    original_snapshot: Task | None = None
    temp_snapshot: Task | None = None
