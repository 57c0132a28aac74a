"""
Shared task store.

The single writable map of task id -> Task shared between the optimistic
mutation adapters and the background refresh. Ownership of an id is tracked
with two markers:

- delete blacklist: ids whose deletion is not yet confirmed; a refresh must
  never reintroduce them.
- pending: ids with an in-flight mutation, or whose last write was answered
  with a pending-sync marker (held for a configured window). A refresh leaves
  their local value untouched.

Writes inside ``transaction()`` are published as one change on exit.
"""

import time
from collections import Counter
from collections.abc import Iterable
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from core.events import TASKS_CHANGED, EventBus
from models.tasks import Task, TimeRange


@dataclass(frozen=True)
class StoreChange:
    task_ids: frozenset[str]
    source: str  # "mutation" | "refresh"


@dataclass
class RefreshResult:
    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    skipped_blacklisted: list[str] = field(default_factory=list)
    kept_pending: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)


def _created_key(task: Task) -> float:
    return task.created_at.timestamp() if task.created_at else 0.0


class TaskStore:
    """Process-wide authoritative task map."""

    def __init__(self, bus: EventBus | None = None, clock=time.monotonic):
        self._tasks: dict[str, Task] = {}
        self._delete_blacklist: set[str] = set()
        self._in_flight: dict[str, int] = {}
        self._holds: dict[str, float] = {}
        self._provisional: set[str] = set()
        self._bus = bus
        self._clock = clock

        self._batch_depth = 0
        self._dirty: set[str] = set()
        self._dirty_source = "mutation"

        # Revision of the last non-refresh write per id, kept while a snapshot
        # requested at an older revision may still arrive
        self._revision = 0
        self._written_at: dict[str, int] = {}
        self._open_revisions: Counter[int] = Counter()

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def tasks(self) -> list[Task]:
        """All tasks in display order."""
        return list(self._tasks.values())

    def ids(self) -> list[str]:
        return list(self._tasks)

    @property
    def revision(self) -> int:
        """Counter bumped by every write that is not a refresh."""
        return self._revision

    def written_since(self, task_id: str, revision: int) -> bool:
        return self._written_at.get(task_id, 0) > revision

    def open_revision(self) -> int:
        """Current revision, registered until the matching snapshot is applied or abandoned."""
        self._open_revisions[self._revision] += 1
        return self._revision

    def close_revision(self, revision: int) -> None:
        if self._open_revisions[revision] > 1:
            self._open_revisions[revision] -= 1
        else:
            self._open_revisions.pop(revision, None)
        floor = min(self._open_revisions, default=self._revision)
        self._written_at = {k: v for k, v in self._written_at.items() if v > floor}

    @property
    def tracked_writes(self) -> int:
        """Number of ids with a recorded local write revision."""
        return len(self._written_at)

    def tasks_between(self, start: datetime, end: datetime) -> list[Task]:
        """Tasks overlapping [start, end]."""
        return [t for t in self._tasks.values() if t.start_date <= end and t.end_date >= start]

    # =========================================================================
    # WRITES (mutation adapters)
    # =========================================================================

    def put(self, task: Task) -> None:
        """Insert or overwrite a task, keeping its position if it exists."""
        self._tasks[task.id] = task
        self._touch(task.id)

    def remove(self, task_id: str) -> Task | None:
        task = self._tasks.pop(task_id, None)
        if task is not None:
            self._touch(task_id)
        return task

    def replace(self, old_id: str, task: Task) -> None:
        """
        Swap the entry at old_id for task (temp id -> server id).

        If task.id is already present (a refresh got there first) that entry is
        overwritten and old_id is dropped.
        """
        if task.id in self._tasks and task.id != old_id:
            self._tasks.pop(old_id, None)
            self._tasks[task.id] = task
        elif old_id in self._tasks:
            self._tasks = {
                (task.id if key == old_id else key): (task if key == old_id else value)
                for key, value in self._tasks.items()
            }
        else:
            self._tasks[task.id] = task
        self._touch(old_id, task.id)

    def restore(self, task: Task) -> bool:
        """
        Reinsert a snapshot ordered by creation time.

        Returns False (and changes nothing) if the id is already present.
        """
        if task.id in self._tasks:
            return False
        ordered = sorted([*self._tasks.values(), task], key=_created_key)
        self._tasks = {t.id: t for t in ordered}
        self._touch(task.id)
        return True

    # =========================================================================
    # OWNERSHIP MARKERS
    # =========================================================================

    def add_to_delete_blacklist(self, task_id: str) -> None:
        self._delete_blacklist.add(task_id)

    def remove_from_delete_blacklist(self, task_id: str) -> None:
        self._delete_blacklist.discard(task_id)

    def is_blacklisted(self, task_id: str) -> bool:
        return task_id in self._delete_blacklist

    @property
    def delete_blacklist(self) -> frozenset[str]:
        return frozenset(self._delete_blacklist)

    def begin_pending(self, task_id: str) -> None:
        """Mark an id as owned by an in-flight mutation."""
        self._in_flight[task_id] = self._in_flight.get(task_id, 0) + 1

    def end_pending(self, task_id: str) -> None:
        count = self._in_flight.get(task_id, 0) - 1
        if count > 0:
            self._in_flight[task_id] = count
        else:
            self._in_flight.pop(task_id, None)

    def hold(self, task_id: str, seconds: float, provisional: bool = False) -> None:
        """
        Keep the local value authoritative for `seconds` (pending-sync writes).

        A provisional entry stands in for a server task whose id is not known
        yet; it is dropped as soon as a refresh brings a task with the same
        title and time range.
        """
        if seconds > 0:
            self._holds[task_id] = self._clock() + seconds
            if provisional:
                self._provisional.add(task_id)

    def release(self, task_id: str) -> None:
        self._holds.pop(task_id, None)
        self._provisional.discard(task_id)

    def is_pending(self, task_id: str) -> bool:
        if self._in_flight.get(task_id):
            return True
        expiry = self._holds.get(task_id)
        if expiry is None:
            return False
        if self._clock() >= expiry:
            self.release(task_id)
            return False
        return True

    def _provisional_match(self, task: Task) -> str | None:
        for task_id in list(self._provisional):
            if not self.is_pending(task_id) or task_id not in self._tasks:
                continue
            local = self._tasks[task_id]
            if (local.title, local.start_date, local.end_date) == (task.title, task.start_date, task.end_date):
                return task_id
        return None

    def pending_ids(self) -> set[str]:
        candidates = set(self._in_flight) | set(self._holds)
        return {task_id for task_id in candidates if self.is_pending(task_id)}

    # =========================================================================
    # REFRESH COLLABORATOR
    # =========================================================================

    def apply_snapshot(
        self,
        tasks: Iterable[Task],
        *,
        scopes: list[TimeRange] | None = None,
        replace: bool = True,
        since_revision: int | None = None,
    ) -> RefreshResult:
        """
        Merge a server snapshot, honouring the ownership markers.

        With replace=True, local tasks absent from the snapshot are removed when
        they fall inside `scopes` (all tasks when scopes is None). Pending ids
        are never touched and blacklisted ids are never reintroduced.

        since_revision is the store revision when the snapshot was requested;
        ids written locally after it are left alone, since the snapshot may
        predate those writes.
        """
        result = RefreshResult()
        incoming: dict[str, Task] = {}
        for task in tasks:
            incoming[task.id] = task

        def owned_locally(task_id: str) -> bool:
            if self.is_pending(task_id):
                return True
            return since_revision is not None and self.written_since(task_id, since_revision)

        with self.transaction(source="refresh"):
            for task_id, task in incoming.items():
                if self.is_blacklisted(task_id):
                    result.skipped_blacklisted.append(task_id)
                    continue
                if owned_locally(task_id):
                    result.kept_pending.append(task_id)
                    continue
                current = self._tasks.get(task_id)
                if current is None:
                    provisional_id = self._provisional_match(task)
                    if provisional_id is not None:
                        self.release(provisional_id)
                        self.replace(provisional_id, task)
                        result.removed.append(provisional_id)
                    else:
                        self.put(task)
                    result.added.append(task_id)
                elif current != task:
                    self.put(task)
                    result.updated.append(task_id)

            if replace:
                for task_id, task in list(self._tasks.items()):
                    if task_id in incoming or owned_locally(task_id):
                        continue
                    if scopes is not None and not any(task.time_range.overlaps(s) for s in scopes):
                        continue
                    self.remove(task_id)
                    result.removed.append(task_id)

        return result

    def clear(self) -> None:
        with self.transaction():
            for task_id in list(self._tasks):
                self.remove(task_id)

    # =========================================================================
    # CHANGE NOTIFICATION
    # =========================================================================

    @contextmanager
    def transaction(self, source: str = "mutation"):
        """Group writes so subscribers observe a single consistent change."""
        if self._batch_depth == 0:
            self._dirty_source = source
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0:
                self._flush()

    def _touch(self, *task_ids: str) -> None:
        if self._batch_depth == 0 or self._dirty_source != "refresh":
            self._revision += 1
            for task_id in task_ids:
                self._written_at[task_id] = self._revision
        self._dirty.update(task_ids)
        if self._batch_depth == 0:
            self._flush()

    def _flush(self) -> None:
        if not self._dirty:
            return
        change = StoreChange(task_ids=frozenset(self._dirty), source=self._dirty_source)
        self._dirty = set()
        self._dirty_source = "mutation"
        if self._bus is not None:
            self._bus.publish(TASKS_CHANGED, change)
