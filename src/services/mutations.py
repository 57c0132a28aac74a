"""
Generic optimistic mutation coordinator.

execute(variables):
1. optimistic_apply(variables) runs synchronously and returns a context
   (temp id, snapshot...) before execute returns;
2. remote_call(variables) is scheduled on the running event loop;
3. success -> on_success(data, variables, context), then a success toast;
4. failure -> on_error(error, variables, context), then an error toast
   (with a Retry action replaying the same variables for transient errors);
5. on_settled() runs after either outcome.

Failures never propagate out of the scheduled task: they are classified,
rolled back and reported, and the outcome is returned as a MutationResult.
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Generic, TypeVar

from core.config import MUTATION_HISTORY_LIMIT, PERMISSION_WARNING_DURATION_MS
from core.errors import TaskServiceError, classify_error
from services.notifications import NotificationAction, Notifier

logger = logging.getLogger(__name__)

V = TypeVar("V")
D = TypeVar("D")
C = TypeVar("C")


# =============================================================================
# MUTATION LOG
# =============================================================================


@dataclass
class MutationRecord:
    """Captured outcome of one mutation."""

    mutation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    key: str = ""
    status: str = "pending"  # pending | success | error
    error_code: str | None = None
    error_message: str | None = None
    processing_time_ms: int = 0


@dataclass(frozen=True)
class SyncState:
    is_syncing: bool
    has_errors: bool
    pending_count: int
    last_sync_at: datetime | None


class MutationLog:
    """Bounded in-memory history of mutations, shared by all coordinators."""

    def __init__(self, limit: int = MUTATION_HISTORY_LIMIT):
        self.records: deque[MutationRecord] = deque(maxlen=limit)
        self._pending: dict[str, MutationRecord] = {}
        self.last_sync_at: datetime | None = None

    def start(self, key: str) -> MutationRecord:
        record = MutationRecord(key=key)
        self._pending[record.mutation_id] = record
        return record

    def finish(self, record: MutationRecord, error: TaskServiceError | None = None) -> None:
        self._pending.pop(record.mutation_id, None)
        if error is None:
            record.status = "success"
            self.last_sync_at = datetime.now(timezone.utc)
        else:
            record.status = "error"
            record.error_code = error.code
            record.error_message = error.message
        self.records.append(record)

    def clear_errors(self) -> None:
        self.records = deque((r for r in self.records if r.status != "error"), maxlen=self.records.maxlen)

    def sync_state(self, keys: set[str] | None = None) -> SyncState:
        """Aggregate state over all mutations, or only those whose key is in keys."""
        pending = [r for r in self._pending.values() if keys is None or r.key in keys]
        errors = [r for r in self.records if r.status == "error" and (keys is None or r.key in keys)]
        return SyncState(
            is_syncing=bool(pending),
            has_errors=bool(errors),
            pending_count=len(pending),
            last_sync_at=self.last_sync_at,
        )


# =============================================================================
# COORDINATOR
# =============================================================================


@dataclass(frozen=True)
class MutationMessages:
    loading: str = "Syncing..."
    success: str = "Changes saved"
    error: str = "Sync failed"


@dataclass
class MutationConfig(Generic[V, D, C]):
    key: str
    remote_call: Callable[[V], Awaitable[D]]
    optimistic_apply: Callable[[V], C] | None = None
    on_success: Callable[[D, V, C], Any] | None = None
    on_error: Callable[[TaskServiceError, V, C], Any] | None = None
    on_settled: Callable[[], Any] | None = None
    messages: MutationMessages = field(default_factory=MutationMessages)
    show_notifications: bool = True


@dataclass(frozen=True)
class MutationResult(Generic[D]):
    ok: bool
    data: D | None = None
    error: TaskServiceError | None = None


class MutationCoordinator(Generic[V, D, C]):
    """Stateless with respect to tasks: all state flows through the callbacks."""

    def __init__(
        self,
        config: MutationConfig[V, D, C],
        notifier: Notifier | None = None,
        log: MutationLog | None = None,
    ):
        self.config = config
        self.notifier = notifier or Notifier()
        self.log = log or MutationLog()
        # Scheduled remote calls, held until done
        self._tasks: set[asyncio.Task] = set()

    @property
    def sync_state(self) -> SyncState:
        return self.log.sync_state({self.config.key})

    def execute(self, variables: V) -> "asyncio.Task[MutationResult[D]]":
        """
        Apply optimistically and schedule the remote call.

        Must be called with a running event loop. The optimistic write is
        complete when this returns; await the returned task for the outcome.
        """
        loop = asyncio.get_running_loop()
        context = None
        if self.config.optimistic_apply is not None:
            context = self.config.optimistic_apply(variables)
        task = loop.create_task(self._run(variables, context))
        self._tasks.add(task)
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("%s callback failed", self.config.key, exc_info=task.exception())

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def execute_and_wait(self, variables: V) -> MutationResult[D]:
        return await self.execute(variables)

    async def _run(self, variables: V, context: C) -> MutationResult[D]:
        config = self.config
        record = self.log.start(config.key)
        started = time.perf_counter()
        notification_id = None
        if config.show_notifications:
            notification_id = self.notifier.loading(config.messages.loading)

        try:
            try:
                data = await config.remote_call(variables)
            except Exception as exc:
                error = classify_error(exc)
                record.processing_time_ms = int((time.perf_counter() - started) * 1000)
                self.log.finish(record, error)
                logger.warning("%s failed (%s): %s", config.key, error.kind, error.message)

                # Local state is restored before the user sees the error
                if config.on_error is not None:
                    config.on_error(error, variables, context)
                if config.show_notifications:
                    self._notify_error(error, variables, notification_id)
                return MutationResult(ok=False, error=error)

            record.processing_time_ms = int((time.perf_counter() - started) * 1000)
            self.log.finish(record)
            if config.on_success is not None:
                config.on_success(data, variables, context)
            if config.show_notifications:
                self.notifier.success(config.messages.success, notification_id=notification_id)
            return MutationResult(ok=True, data=data)
        finally:
            if config.on_settled is not None:
                config.on_settled()

    def _notify_error(self, error: TaskServiceError, variables: V, notification_id: str | None) -> None:
        if error.kind == "permission":
            self.notifier.warning(
                "Permission denied",
                description=error.message,
                duration_ms=PERMISSION_WARNING_DURATION_MS,
                notification_id=notification_id,
            )
            return

        action = None
        if error.retryable:
            action = NotificationAction("Retry", lambda: self.execute(variables))
        self.notifier.error(
            self.config.messages.error,
            description=error.message,
            action=action,
            notification_id=notification_id,
        )
