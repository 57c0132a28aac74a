"""
Background refresh of the task store.

Loads date ranges on demand, remembers which ranges are loaded (merging
overlapping or adjacent ones), polls every loaded range periodically and runs
a deferred reconciliation pass after each settled mutation. All writes go
through TaskStore.apply_snapshot so the blacklist and pending markers are
honoured. A failed fetch keeps the current tasks.
"""

import asyncio
import logging
from datetime import datetime, timedelta

from core.config import (
    INITIAL_RANGE_MARGIN_DAYS,
    POLLING_INTERVAL_SECONDS,
    RECONCILE_DELAY_SECONDS,
)
from core.errors import classify_error
from core.store import RefreshResult, TaskStore
from models.tasks import TimeRange
from services import calendar as calendar_service
from services.notifications import Notifier

logger = logging.getLogger(__name__)

ADJACENT_RANGE_GAP = timedelta(days=1)


def merge_ranges(ranges: list[TimeRange], gap: timedelta = ADJACENT_RANGE_GAP) -> list[TimeRange]:
    """Merge ranges that overlap or are separated by at most `gap`."""
    merged: list[TimeRange] = []
    for current in sorted(ranges, key=lambda r: r.start):
        if merged and current.start <= merged[-1].end + gap:
            last = merged[-1]
            merged[-1] = TimeRange(last.start, max(last.end, current.end))
        else:
            merged.append(current)
    return merged


class TaskRefresher:
    """Keeps the store in line with the server for every loaded date range."""

    def __init__(
        self,
        store: TaskStore,
        service=None,
        notifier: Notifier | None = None,
        polling_interval: float = POLLING_INTERVAL_SECONDS,
        reconcile_delay: float = RECONCILE_DELAY_SECONDS,
    ):
        self.store = store
        self.service = service or calendar_service
        self.notifier = notifier
        self.polling_interval = polling_interval
        self.reconcile_delay = reconcile_delay

        self.loaded_ranges: list[TimeRange] = []
        self.error: Exception | None = None
        self._in_flight: set[TimeRange] = set()
        self._poll_task: asyncio.Task | None = None
        self._reconcile_handle: asyncio.TimerHandle | None = None
        self._reconcile_tasks: set[asyncio.Task] = set()

    @property
    def is_loading(self) -> bool:
        return bool(self._in_flight)

    # =========================================================================
    # RANGE LOADING
    # =========================================================================

    def is_range_loaded(self, start: datetime, end: datetime) -> bool:
        """True if the range is being fetched or inside an already loaded range."""
        if TimeRange(start, end) in self._in_flight:
            return True
        return any(start >= r.start and end <= r.end for r in self.loaded_ranges)

    async def fetch_range(self, start: datetime, end: datetime) -> RefreshResult | None:
        """Load one date range; returns None if skipped or failed."""
        requested = TimeRange(start, end)
        if self.is_range_loaded(start, end):
            logger.debug("Range %s - %s already loaded", start, end)
            return None

        self._in_flight.add(requested)
        self.error = None
        revision = self.store.open_revision()
        try:
            tasks = await self.service.fetch_calendar_tasks(start, end)
        except Exception as exc:
            self.store.close_revision(revision)
            self.error = classify_error(exc)
            logger.warning("Could not load tasks for %s - %s: %s", start, end, exc)
            if self.notifier is not None:
                self.notifier.error("Error", description="Could not load tasks for this period")
            return None
        except asyncio.CancelledError:
            self.store.close_revision(revision)
            raise
        finally:
            self._in_flight.discard(requested)

        result = self.store.apply_snapshot(tasks, scopes=[requested], since_revision=revision)
        self.store.close_revision(revision)
        self.loaded_ranges = merge_ranges([*self.loaded_ranges, requested])
        logger.info("Loaded %d tasks, total: %d", len(tasks), len(self.store))
        return result

    async def load_initial(self, now: datetime | None = None) -> RefreshResult | None:
        """Load the current period plus a margin on either side."""
        now = now or datetime.now().astimezone()
        margin = timedelta(days=INITIAL_RANGE_MARGIN_DAYS)
        return await self.fetch_range(now - margin, now + margin)

    async def refresh(self) -> RefreshResult | None:
        """Re-fetch every loaded range and reconcile the store wholesale."""
        if not self.loaded_ranges:
            return None
        ranges = list(self.loaded_ranges)
        revision = self.store.open_revision()
        tasks = []
        try:
            for time_range in ranges:
                tasks.extend(await self.service.fetch_calendar_tasks(time_range.start, time_range.end))
        except Exception as exc:
            self.store.close_revision(revision)
            self.error = classify_error(exc)
            logger.warning("Refresh failed, keeping current tasks: %s", exc)
            return None
        except asyncio.CancelledError:
            self.store.close_revision(revision)
            raise

        self.error = None
        result = self.store.apply_snapshot(tasks, scopes=ranges, since_revision=revision)
        self.store.close_revision(revision)
        if result.skipped_blacklisted:
            logger.debug("Refresh skipped blacklisted ids: %s", result.skipped_blacklisted)
        if result.changed:
            logger.info(
                "Refresh: %d added, %d updated, %d removed",
                len(result.added),
                len(result.updated),
                len(result.removed),
            )
        return result

    def clear(self) -> None:
        self.store.clear()
        self.loaded_ranges = []
        self._in_flight.clear()

    # =========================================================================
    # SCHEDULING
    # =========================================================================

    def notify_mutation_settled(self) -> None:
        """Schedule one refresh after the reconcile delay (restarted on each call)."""
        loop = asyncio.get_running_loop()
        if self._reconcile_handle is not None:
            self._reconcile_handle.cancel()
        self._reconcile_handle = loop.call_later(self.reconcile_delay, self._start_reconcile)

    def _start_reconcile(self) -> None:
        self._reconcile_handle = None
        task = asyncio.get_running_loop().create_task(self.refresh())
        self._reconcile_tasks.add(task)
        task.add_done_callback(self._reconcile_tasks.discard)

    def start_polling(self) -> None:
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.polling_interval)
            await self.refresh()

    async def stop(self) -> None:
        """Cancel polling and any scheduled reconciliation."""
        if self._reconcile_handle is not None:
            self._reconcile_handle.cancel()
            self._reconcile_handle = None
        for task in (self._poll_task, *self._reconcile_tasks):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._poll_task = None
        self._reconcile_tasks.clear()
