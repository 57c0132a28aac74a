"""
Create / update / delete adapters on top of the mutation coordinator.

Ownership rules against the background refresh:
- create: the temp id is pending while the call is in flight, then held as a
  provisional entry when the server answers pending-sync without an id;
- update: the id is pending while in flight, then held for
  PENDING_SYNC_HOLD_SECONDS when the server answers with a pending-sync marker;
- delete: the id is on the delete blacklist until the server confirms.

Every rollback runs inside a store transaction so subscribers see one change.
"""

import logging
import time
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone

from core.config import (
    BATCH_UPDATE_INFO_DURATION_MS,
    PENDING_SYNC_HOLD_SECONDS,
    TEMP_ID_PREFIX,
)
from core.errors import TaskServiceError
from core.store import TaskStore
from models.responses import PendingSync
from models.tasks import MemberRef, PendingMutation, Task, TaskCreatePayload, TaskUpdate
from services import calendar as calendar_service
from services.mutations import (
    MutationConfig,
    MutationCoordinator,
    MutationLog,
    MutationMessages,
    MutationResult,
)
from services.notifications import Notifier

logger = logging.getLogger(__name__)

# Field name -> label used in the batch update summary
_BATCH_FIELD_LABELS = {
    "start_date": "dates",
    "end_date": "dates",
    "assigned_members": "assignees",
    "status": "status",
    "title": "title",
}


def generate_temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}-{uuid.uuid4().hex[:7]}"


def is_temporary_id(task_id: str) -> bool:
    return task_id.startswith(TEMP_ID_PREFIX)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UpdateRequest:
    task_id: str
    update: TaskUpdate


class _TaskMutation:
    """Shared wiring: store, remote service, notifications, refresh hook."""

    key = ""
    messages = MutationMessages()

    def __init__(
        self,
        store: TaskStore,
        service=None,
        notifier: Notifier | None = None,
        log: MutationLog | None = None,
        refresher=None,
    ):
        self.store = store
        self.service = service or calendar_service
        self.refresher = refresher
        self.coordinator = MutationCoordinator(
            MutationConfig(
                key=self.key,
                remote_call=self._remote_call,
                optimistic_apply=self._optimistic_apply,
                on_success=self._on_success,
                on_error=self._on_error,
                messages=self.messages,
            ),
            notifier=notifier,
            log=log,
        )

    @property
    def notifier(self) -> Notifier:
        return self.coordinator.notifier

    @property
    def sync_state(self):
        return self.coordinator.sync_state

    def mutate(self, variables):
        """Apply now, sync in the background; returns the scheduled asyncio task."""
        return self.coordinator.execute(variables)

    async def mutate_async(self, variables) -> MutationResult:
        return await self.coordinator.execute_and_wait(variables)

    def _settled(self) -> None:
        if self.refresher is not None:
            self.refresher.notify_mutation_settled()

    async def _remote_call(self, variables):
        raise NotImplementedError

    def _optimistic_apply(self, variables):
        raise NotImplementedError

    def _on_success(self, data, variables, context):
        raise NotImplementedError

    def _on_error(self, error: TaskServiceError, variables, context):
        raise NotImplementedError


# =============================================================================
# CREATE
# =============================================================================


class CreateTaskMutation(_TaskMutation):
    key = "create-task"
    messages = MutationMessages(
        loading="Creating task...",
        success="Task created",
        error="Could not create task",
    )

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._pending: dict[str, PendingMutation] = {}
        self._payloads: dict[str, TaskCreatePayload] = {}

    async def _remote_call(self, payload: TaskCreatePayload):
        return await self.service.create_task(payload)

    def _optimistic_apply(self, payload: TaskCreatePayload) -> str:
        temp_id = generate_temp_id()
        now = _now()
        temp_task = Task(
            id=temp_id,
            title=payload.title,
            start_date=payload.start_date,
            end_date=payload.end_date,
            assigned_members=payload.assigned_members,
            task_type=payload.task_type,
            status=payload.status,
            project_id=payload.project_id,
            client_id=payload.client_id,
            description=payload.description,
            notes=payload.notes,
            project_data=payload.project_data,
            client_data=payload.client_data,
            assigned_members_data=payload.assigned_members_data,
            created_at=now,
            updated_at=now,
        )
        self._pending[temp_id] = PendingMutation(task_id=temp_id, kind="create", temp_snapshot=temp_task)
        self._payloads[temp_id] = payload
        self.store.begin_pending(temp_id)
        self.store.put(temp_task)
        return temp_id

    def _on_error(self, error, payload, temp_id: str):
        with self.store.transaction():
            self.store.end_pending(temp_id)
            self.store.remove(temp_id)
        self._pending.pop(temp_id, None)
        self._payloads.pop(temp_id, None)

    def _on_success(self, response, payload: TaskCreatePayload, temp_id: str):
        self._pending.pop(temp_id, None)
        original = self._payloads.pop(temp_id, payload)

        with self.store.transaction():
            self.store.end_pending(temp_id)
            if isinstance(response, PendingSync):
                # Accepted but not yet in Notion: keep the provisional task
                if response.id and response.id != temp_id and temp_id in self.store:
                    provisional = self.store.get(temp_id).model_copy(update={"id": response.id})
                    self.store.replace(temp_id, provisional)
                    self.store.hold(response.id, PENDING_SYNC_HOLD_SECONDS)
                else:
                    # No server id yet: the first refreshed task with the same title and window replaces it
                    self.store.hold(temp_id, PENDING_SYNC_HOLD_SECONDS, provisional=True)
            else:
                merged = response.model_copy(
                    update={
                        "project_data": response.project_data or original.project_data,
                        "client_data": response.client_data or original.client_data,
                        "assigned_members_data": response.assigned_members_data or original.assigned_members_data,
                    }
                )
                self.store.replace(temp_id, merged)
        self._settled()

    # Helpers

    def quick_create(
        self,
        title: str,
        start_date: datetime,
        end_date: datetime,
        assigned_members: tuple[str, ...] | list[str] = (),
    ):
        """Create with just a title, a window and optional assignees."""
        payload = TaskCreatePayload(
            title=title,
            start_date=start_date,
            end_date=end_date,
            assigned_members=tuple(assigned_members),
            status="not_started",
        )
        return self.mutate(payload)

    def temporary_tasks(self) -> list[Task]:
        return [pending.temp_snapshot for pending in self._pending.values()]

    @property
    def has_temporary_tasks(self) -> bool:
        return bool(self._pending)


# =============================================================================
# UPDATE
# =============================================================================


class UpdateTaskMutation(_TaskMutation):
    key = "update-task"
    messages = MutationMessages(
        loading="Syncing...",
        success="Changes saved",
        error="Sync failed",
    )

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._in_flight: Counter[str] = Counter()

    async def _remote_call(self, request: UpdateRequest):
        return await self.service.update_task(request.task_id, request.update)

    def _optimistic_apply(self, request: UpdateRequest) -> PendingMutation:
        task_id = request.task_id
        snapshot = self.store.get(task_id)
        merged = None
        if snapshot is not None:
            # Raises before any marker is taken if the merged task is invalid
            merged = Task.model_validate(
                {**dict(snapshot), **request.update.changes(), "updated_at": _now()}
            )
        self._in_flight[task_id] += 1
        self.store.begin_pending(task_id)
        if merged is not None:
            self.store.put(merged)
        return PendingMutation(task_id=task_id, kind="update", original_snapshot=snapshot)

    def _finish(self, task_id: str) -> None:
        self._in_flight[task_id] -= 1
        if self._in_flight[task_id] <= 0:
            del self._in_flight[task_id]
        self.store.end_pending(task_id)

    def _on_error(self, error, request: UpdateRequest, context: PendingMutation):
        with self.store.transaction():
            self._finish(request.task_id)
            snapshot = context.original_snapshot
            if snapshot is not None and not self.store.is_blacklisted(snapshot.id):
                self.store.put(snapshot)

    def _on_success(self, response, request: UpdateRequest, context: PendingMutation):
        task_id = request.task_id
        with self.store.transaction():
            self._finish(task_id)
            if isinstance(response, PendingSync):
                # Keep the optimistic value; the next refresh after the hold brings the real one
                self.store.hold(task_id, PENDING_SYNC_HOLD_SECONDS)
            elif not self.store.is_blacklisted(task_id):
                self.store.release(task_id)
                self.store.put(response)
        self._settled()

    # Helpers

    def update(self, task_id: str, update: TaskUpdate | None = None, **changes):
        """Partial update: update(task_id, TaskUpdate(...)) or update(task_id, title=...)."""
        if update is None:
            update = TaskUpdate(**changes)
        return self.mutate(UpdateRequest(task_id, update))

    def update_dates(self, task_id: str, start_date: datetime, end_date: datetime):
        return self.update(task_id, start_date=start_date, end_date=end_date)

    def update_assignees(
        self,
        task_id: str,
        assigned_members: tuple[str, ...] | list[str],
        assigned_members_data: tuple[MemberRef, ...] | list[MemberRef] | None = None,
    ):
        changes = {"assigned_members": tuple(assigned_members)}
        if assigned_members_data is not None:
            changes["assigned_members_data"] = tuple(assigned_members_data)
        return self.update(task_id, **changes)

    def batch_update(self, task_id: str, update: TaskUpdate):
        """Several fields at once, announced with a short summary notification."""
        labels = []
        for name in update.model_fields_set:
            label = _BATCH_FIELD_LABELS.get(name)
            if label and label not in labels:
                labels.append(label)
        if labels:
            self.notifier.info(
                "Updating: " + ", ".join(sorted(labels)),
                duration_ms=BATCH_UPDATE_INFO_DURATION_MS,
            )
        return self.mutate(UpdateRequest(task_id, update))

    def is_pending(self, task_id: str) -> bool:
        return task_id in self._in_flight


# =============================================================================
# DELETE
# =============================================================================


class DeleteTaskMutation(_TaskMutation):
    key = "delete-task"
    messages = MutationMessages(
        loading="Deleting task...",
        success="Task deleted",
        error="Could not delete task",
    )

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._deleted: dict[str, Task] = {}

    async def _remote_call(self, task_id: str):
        return await self.service.delete_task(task_id)

    def _optimistic_apply(self, task_id: str) -> Task | None:
        snapshot = self.store.get(task_id)
        if snapshot is not None:
            self._deleted[task_id] = snapshot
        # Blacklist before removing so no refresh can slip in between
        self.store.add_to_delete_blacklist(task_id)
        self.store.remove(task_id)
        return snapshot

    def _on_error(self, error, task_id: str, snapshot: Task | None):
        with self.store.transaction():
            self.store.remove_from_delete_blacklist(task_id)
            if snapshot is not None:
                self.store.restore(snapshot)
        self._deleted.pop(task_id, None)

    def _on_success(self, _response, task_id: str, snapshot: Task | None):
        self._deleted.pop(task_id, None)
        self.store.remove_from_delete_blacklist(task_id)
        self._settled()

    # Helpers

    def delete(self, task_id: str):
        return self.mutate(task_id)

    def delete_many(self, task_ids: list[str]) -> list:
        return [self.mutate(task_id) for task_id in task_ids]

    def deleted_tasks(self) -> list[Task]:
        """Snapshots of tasks whose deletion is not yet confirmed."""
        return list(self._deleted.values())

    @property
    def has_deleted_tasks(self) -> bool:
        return bool(self._deleted)

    def restore_deleted(self, task_id: str) -> bool:
        """Undo: put a deleted snapshot back. Returns False if nothing to restore."""
        snapshot = self._deleted.pop(task_id, None)
        if snapshot is None:
            return False
        with self.store.transaction():
            self.store.remove_from_delete_blacklist(task_id)
            self.store.restore(snapshot)
        return True
