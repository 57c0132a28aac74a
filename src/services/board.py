"""
Calendar board: wires the store, layout, interaction and mutation adapters.

Gesture -> InteractionController (live overrides) -> layout re-render ->
commit -> Update/Create adapter -> store.
"""

import logging
from dataclasses import dataclass, field
from datetime import date

from core.events import EventBus
from core.store import TaskStore
from models.calendar import (
    CalendarSettings,
    CommitResult,
    DayBadge,
    GestureType,
    LiveLabel,
    Member,
    TaskPosition,
)
from services.interaction import InteractionController
from services.layout import day_badges, layout_day, tasks_on_day
from services.mutations import MutationLog
from services.notifications import Notifier
from services.refresh import TaskRefresher
from services.settings import CalendarSettingsStore
from services.task_mutations import CreateTaskMutation, DeleteTaskMutation, UpdateTaskMutation

logger = logging.getLogger(__name__)

DEFAULT_NEW_TASK_TITLE = "New task"

# Task types that make a member unavailable for the day
_ABSENCE_WARNINGS = {
    "holiday": "Warning: {name} is on leave that day",
    "school": "Warning: {name} is in training that day",
}


@dataclass
class DayView:
    """Everything needed to draw one day."""

    day: date
    columns: dict[str | None, list[TaskPosition]]
    badges: list[DayBadge] = field(default_factory=list)
    live_label: LiveLabel | None = None
    selection: tuple[float, float] | None = None


class CalendarBoard:
    def __init__(
        self,
        store: TaskStore,
        bus: EventBus,
        members: list[Member] | None = None,
        service=None,
        notifier: Notifier | None = None,
        settings: CalendarSettings | None = None,
    ):
        self.store = store
        self.bus = bus
        self.members = list(members or [])
        self.notifier = notifier or Notifier(bus)
        self.log = MutationLog()
        self.settings = CalendarSettingsStore(bus, settings)

        self.refresher = TaskRefresher(store, service=service, notifier=self.notifier)
        adapter_args = dict(service=service, notifier=self.notifier, log=self.log, refresher=self.refresher)
        self.creator = CreateTaskMutation(store, **adapter_args)
        self.updater = UpdateTaskMutation(store, **adapter_args)
        self.deleter = DeleteTaskMutation(store, **adapter_args)

        self.container_height: float | None = None
        self.interaction = InteractionController(store, self.settings.current)
        self._unsubscribe = self.settings.subscribe(self._on_settings_changed)

    @classmethod
    def create(cls, members: list[Member] | None = None, service=None, echo: bool = False) -> "CalendarBoard":
        bus = EventBus()
        return cls(TaskStore(bus), bus, members=members, service=service, notifier=Notifier(bus, echo=echo))

    def _on_settings_changed(self, settings: CalendarSettings) -> None:
        self.interaction.settings = self.grid_settings

    @property
    def grid_settings(self) -> CalendarSettings:
        """Current settings scaled to the rendered grid, shared by layout and gestures."""
        settings = self.settings.current
        if self.container_height:
            settings = settings.with_container_height(self.container_height)
        return settings

    def set_container_height(self, container_height: float | None) -> None:
        self.container_height = container_height
        self.interaction.settings = self.grid_settings

    @property
    def sync_state(self):
        """Aggregate sync state over all task mutations."""
        return self.log.sync_state()

    # =========================================================================
    # RENDERING
    # =========================================================================

    def render_day(self, day: date, container_height: float | None = None) -> DayView:
        if container_height is not None and container_height != self.container_height:
            self.set_container_height(container_height)
        settings = self.grid_settings
        tasks = self.store.tasks()
        return DayView(
            day=day,
            columns=layout_day(tasks, self.members, day, settings, self.interaction.overrides()),
            badges=day_badges(tasks, day, settings.timezone),
            live_label=self.interaction.live_label,
            selection=self.interaction.selection_overlay(),
        )

    # =========================================================================
    # GESTURES
    # =========================================================================

    def pointer_down(self, task_id: str, gesture_type: GestureType, pointer_y: float,
                     pointer_x: float = 0.0, member_id: str | None = None) -> bool:
        return self.interaction.pointer_down(task_id, gesture_type, pointer_y, pointer_x, member_id)

    def begin_selection(self, day: date, grid_y: float, member_id: str | None = None) -> bool:
        return self.interaction.begin_selection(day, grid_y, member_id=member_id)

    def pointer_move(self, pointer_y: float, pointer_x: float = 0.0, **kwargs):
        return self.interaction.pointer_move(pointer_y, pointer_x, **kwargs)

    def key_down(self, key: str) -> bool:
        return self.interaction.key_down(key)

    def pointer_up(self):
        """Commit the active gesture; returns the scheduled mutation task, if any."""
        result = self.interaction.pointer_up()
        if result is None:
            return None
        return self.handle_commit(result)

    def handle_commit(self, result: CommitResult):
        if result.gesture_type == GestureType.SELECT:
            members = (result.target_member_id,) if result.target_member_id else ()
            return self.creator.quick_create(DEFAULT_NEW_TASK_TITLE, result.start_date, result.end_date, members)

        task = self.store.get(result.task_id)
        if task is None:
            logger.warning("Committed gesture for unknown task %s", result.task_id)
            return None

        if result.gesture_type == GestureType.MOVE:
            self._warn_absences(result.target_member_id, result.start_date.date())
        if not (result.gesture_type == GestureType.MOVE and result.member_changed):
            return self.updater.update_dates(task.id, result.start_date, result.end_date)

        members = [m for m in task.assigned_members if m != result.source_member_id]
        if result.target_member_id is not None and result.target_member_id not in members:
            members.append(result.target_member_id)
        return self.updater.update(
            task.id,
            start_date=result.start_date,
            end_date=result.end_date,
            assigned_members=tuple(members),
        )

    # =========================================================================
    # DROP WARNINGS
    # =========================================================================

    def absence_warnings(self, member_id: str | None, day: date) -> list[str]:
        """Warnings for a member who is on leave or in training on the given day."""
        if member_id is None:
            return []
        absences = {
            task.task_type
            for task in tasks_on_day(self.store.tasks(), day, self.settings.current.timezone)
            if task.task_type in _ABSENCE_WARNINGS and member_id in task.assigned_members
        }
        name = next((m.name for m in self.members if m.id == member_id), member_id)
        # Leave takes precedence over training
        for task_type in ("holiday", "school"):
            if task_type in absences:
                return [_ABSENCE_WARNINGS[task_type].format(name=name)]
        return []

    def _warn_absences(self, member_id: str | None, day: date) -> None:
        for message in self.absence_warnings(member_id, day):
            self.notifier.warning(message)

    def close(self) -> None:
        self._unsubscribe()
