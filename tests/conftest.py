"""
Pytest configuration and shared fixtures.
"""

import asyncio
import itertools
import sys
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

# Add src and the fixture generators to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent / "fixtures"))

from core.events import EventBus
from core.store import TaskStore
from models.calendar import CalendarSettings, Member
from models.responses import PendingSync
from models.tasks import Task

DAY = date(2025, 11, 3)  # a Monday


def at(hour, minute=0, day=DAY):
    """Naive local datetime on the test day."""
    return datetime(day.year, day.month, day.day, hour, minute)


def make_task(task_id, start, end, **fields):
    return Task(id=task_id, title=fields.pop("title", task_id), start_date=start, end_date=end, **fields)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeTaskService:
    """
    In-memory stand-in for services.calendar.

    Set `errors[op]` to make an operation raise, `gate` (or `gates[op]`) to
    hold calls until the event is set, and `pending_sync` to answer writes
    with the pending-sync marker.
    """

    def __init__(self):
        self.tasks: dict[str, Task] = {}
        self.calls: list[tuple] = []
        self.errors: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.gates: dict[str, asyncio.Event] = {}
        self.pending_sync = False
        self._ids = itertools.count(1)

    async def _enter(self, op, *args):
        self.calls.append((op, *args))
        gate = self.gates.get(op, self.gate)
        if gate is not None:
            await gate.wait()
        if op in self.errors:
            raise self.errors[op]

    def calls_for(self, op):
        return [call for call in self.calls if call[0] == op]

    async def fetch_calendar_tasks(self, start, end):
        await self._enter("fetch", start, end)
        return [t for t in self.tasks.values() if t.start_date <= end and t.end_date >= start]

    async def create_task(self, payload):
        await self._enter("create", payload)
        if self.pending_sync:
            return PendingSync()
        task = Task(
            id=f"srv-{next(self._ids)}",
            title=payload.title,
            start_date=payload.start_date,
            end_date=payload.end_date,
            assigned_members=payload.assigned_members,
            status=payload.status,
            created_at=datetime.now(timezone.utc),
        )
        self.tasks[task.id] = task
        return task

    async def update_task(self, task_id, update):
        await self._enter("update", task_id, update)
        if self.pending_sync:
            return PendingSync(id=task_id)
        current = self.tasks[task_id]
        task = Task.model_validate({**dict(current), **update.changes()})
        self.tasks[task_id] = task
        return task

    async def delete_task(self, task_id):
        await self._enter("delete", task_id)
        self.tasks.pop(task_id, None)


@pytest.fixture
def day():
    return DAY


@pytest.fixture
def settings():
    """Naive local datetimes, 80px per hour, 8:00-21:00 grid, 8:00-20:00 business hours."""
    return CalendarSettings(pixels_per_hour=80.0, column_gap_percent=0)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(bus, clock):
    return TaskStore(bus, clock=clock)


@pytest.fixture
def service():
    return FakeTaskService()


@pytest.fixture
def members():
    return [
        Member(id="m-alice", name="Alice Martin"),
        Member(id="m-bruno", name="Bruno Petit"),
    ]


@pytest.fixture
def sample_task():
    """A 09:00-10:00 task assigned to Alice."""
    return make_task(
        "t1",
        at(9),
        at(10),
        assigned_members=("m-alice",),
        created_at=datetime(2025, 10, 1, tzinfo=timezone.utc),
    )
