"""
Tests for the create / update / delete adapters and their interplay with
background refreshes.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from conftest import at, make_task
from core.config import BATCH_UPDATE_INFO_DURATION_MS
from core.errors import ConflictError, NetworkError, ValidationError
from models.tasks import ProjectRef, TaskCreatePayload, TaskUpdate, TimeRange
from services.notifications import Notifier
from services.refresh import TaskRefresher
from services.task_mutations import (
    CreateTaskMutation,
    DeleteTaskMutation,
    UpdateTaskMutation,
    generate_temp_id,
    is_temporary_id,
)


@pytest.fixture
def notifier(bus):
    return Notifier(bus)


@pytest.fixture
def refresher(store, service):
    refresher = TaskRefresher(store, service)
    refresher.loaded_ranges = [TimeRange(at(0), at(23, 59))]
    return refresher


def temporary_ids(store):
    return [task_id for task_id in store.ids() if is_temporary_id(task_id)]


def created(day):
    return datetime(2025, 10, day, tzinfo=timezone.utc)


class TestTempIds:
    def test_format(self):
        temp_id = generate_temp_id()
        assert is_temporary_id(temp_id)
        assert temp_id != generate_temp_id()
        assert not is_temporary_id("srv-1")


class TestCreate:
    """Tests for optimistic creation."""

    def payload(self, **fields):
        return TaskCreatePayload(title="Kick-off", start_date=at(10), end_date=at(11), **fields)

    def test_temp_task_visible_before_the_call_returns(self, store, service, notifier):
        mutation = CreateTaskMutation(store, service, notifier)

        async def scenario():
            pending = mutation.mutate(self.payload())
            (temp_id,) = temporary_ids(store)
            assert store.get(temp_id).title == "Kick-off"
            assert mutation.has_temporary_tasks
            return await pending

        result = asyncio.run(scenario())
        assert result.ok
        assert store.ids() == ["srv-1"]
        assert not mutation.has_temporary_tasks
        assert not store.pending_ids()

    def test_failed_create_leaves_no_temp_task(self, store, service, notifier):
        service.errors["create"] = ValidationError("Title is required", status_code=400)
        mutation = CreateTaskMutation(store, service, notifier)

        result = asyncio.run(mutation.mutate_async(self.payload()))
        assert not result.ok
        assert temporary_ids(store) == []
        assert len(store) == 0
        assert mutation.temporary_tasks() == []
        toast = notifier.last("error")
        assert toast.title == "Could not create task"
        assert toast.description == "Title is required"

    def test_server_task_keeps_position_and_enriched_data(self, store, service, notifier):
        store.put(make_task("before", at(8), at(9)))
        mutation = CreateTaskMutation(store, service, notifier)
        project = ProjectRef(id="p-site", name="Website redesign")

        async def scenario():
            pending = mutation.mutate(self.payload(project_id="p-site", project_data=project))
            store.put(make_task("after", at(15), at(16)))
            return await pending

        asyncio.run(scenario())
        assert store.ids() == ["before", "srv-1", "after"]
        assert store.get("srv-1").project_data == project

    def test_pending_sync_keeps_the_provisional_task(self, store, service, notifier, refresher):
        service.pending_sync = True
        mutation = CreateTaskMutation(store, service, notifier)

        async def scenario():
            await mutation.mutate_async(self.payload())
            # Server snapshot does not contain the task yet
            await refresher.refresh()

        asyncio.run(scenario())
        (temp_id,) = temporary_ids(store)
        assert store.is_pending(temp_id)

    def test_refresh_during_create_keeps_the_temp_task(self, store, service, notifier, refresher):
        service.gates["create"] = asyncio.Event()
        mutation = CreateTaskMutation(store, service, notifier)

        async def scenario():
            pending = mutation.mutate(self.payload())
            await refresher.refresh()
            assert len(temporary_ids(store)) == 1
            service.gates["create"].set()
            await pending

        asyncio.run(scenario())
        assert store.ids() == ["srv-1"]

    def test_refreshed_server_task_replaces_the_held_provisional_task(self, store, service, notifier, refresher, clock):
        service.pending_sync = True
        store.put(make_task("before", at(8), at(9)))
        mutation = CreateTaskMutation(store, service, notifier)
        payload = TaskCreatePayload(title="Draft", start_date=at(10), end_date=at(11))

        async def scenario():
            await mutation.mutate_async(payload)
            (temp_id,) = temporary_ids(store)
            service.tasks["before"] = store.get("before")
            service.tasks["srv-9"] = make_task("srv-9", at(10), at(11), title="Draft")
            clock.advance(5)
            await refresher.refresh()
            return temp_id

        temp_id = asyncio.run(scenario())
        assert store.ids() == ["before", "srv-9"]
        assert [t.title for t in store.tasks()].count("Draft") == 1
        assert not store.is_pending(temp_id)

    def test_quick_create(self, store, service, notifier):
        mutation = CreateTaskMutation(store, service, notifier)

        async def scenario():
            await mutation.quick_create("Call", at(14), at(14, 30), ["m-alice"])

        asyncio.run(scenario())
        (_, payload) = service.calls_for("create")[0]
        assert payload.assigned_members == ("m-alice",)
        assert payload.status == "not_started"


class TestUpdate:
    """Tests for optimistic updates and rollback."""

    def test_optimistic_value_then_server_value(self, store, service, notifier, sample_task):
        store.put(sample_task)
        service.tasks["t1"] = sample_task
        mutation = UpdateTaskMutation(store, service, notifier)

        async def scenario():
            pending = mutation.update("t1", title="Renamed")
            assert store.get("t1").title == "Renamed"
            assert mutation.is_pending("t1")
            return await pending

        result = asyncio.run(scenario())
        assert result.ok
        assert store.get("t1") == service.tasks["t1"]
        assert not mutation.is_pending("t1")
        assert not store.is_pending("t1")

    def test_failure_restores_the_exact_snapshot(self, store, service, notifier, sample_task):
        store.put(sample_task)
        service.errors["update"] = NetworkError("timeout")
        mutation = UpdateTaskMutation(store, service, notifier)

        result = asyncio.run(_move(mutation))
        assert not result.ok
        assert store.get("t1") is sample_task
        assert not store.is_pending("t1")
        assert notifier.last("error").action.label == "Retry"

    def test_conflict_rolls_back_without_retry(self, store, service, notifier, sample_task):
        store.put(sample_task)
        service.errors["update"] = ConflictError("Task was modified", status_code=409)
        mutation = UpdateTaskMutation(store, service, notifier)

        asyncio.run(_move(mutation))
        assert store.get("t1") is sample_task
        assert notifier.last("error").action is None

    def test_pending_sync_holds_the_optimistic_value(self, store, service, notifier, refresher, sample_task, clock):
        store.put(sample_task)
        service.tasks["t1"] = sample_task
        service.pending_sync = True
        mutation = UpdateTaskMutation(store, service, notifier)

        async def scenario():
            await _update_dates(mutation)
            # The server still returns the old range
            await refresher.refresh()
            assert store.get("t1").start_date == at(11)

            clock.advance(10_000)
            await refresher.refresh()

        asyncio.run(scenario())
        assert store.get("t1").start_date == at(9)

    def test_refresh_while_in_flight_does_not_revert(self, store, service, notifier, refresher, sample_task):
        store.put(sample_task)
        service.tasks["t1"] = sample_task
        service.gates["update"] = asyncio.Event()
        mutation = UpdateTaskMutation(store, service, notifier)

        async def scenario():
            pending = _update_dates(mutation)
            await refresher.refresh()
            assert store.get("t1").start_date == at(11)
            service.gates["update"].set()
            await pending

        asyncio.run(scenario())
        assert store.get("t1").start_date == at(11)

    def test_batch_update_announces_changed_fields(self, store, service, notifier, sample_task):
        store.put(sample_task)
        service.tasks["t1"] = sample_task
        mutation = UpdateTaskMutation(store, service, notifier)
        update = TaskUpdate(start_date=at(13), end_date=at(14), assigned_members=("m-bruno",))

        async def scenario():
            await mutation.batch_update("t1", update)

        asyncio.run(scenario())
        info = notifier.last("info")
        assert info.title == "Updating: assignees, dates"
        assert info.duration_ms == BATCH_UPDATE_INFO_DURATION_MS
        assert store.get("t1").assigned_members == ("m-bruno",)

    def test_update_rejects_unknown_fields(self, store, service, notifier):
        mutation = UpdateTaskMutation(store, service, notifier)
        with pytest.raises(ValueError):
            mutation.update("t1", colour="red")

    def test_invalid_merged_task_takes_no_ownership(self, store, service, notifier, refresher, sample_task):
        store.put(sample_task)
        service.tasks["t1"] = make_task("t1", at(13), at(14), assigned_members=("m-alice",))
        mutation = UpdateTaskMutation(store, service, notifier)

        async def scenario():
            # Start after the current end
            with pytest.raises(ValueError):
                mutation.update("t1", start_date=at(11))
            assert store.get("t1") is sample_task
            assert not mutation.is_pending("t1")
            assert not store.is_pending("t1")
            return await refresher.refresh()

        result = asyncio.run(scenario())
        assert result.updated == ["t1"]
        assert store.get("t1").start_date == at(13)
        assert service.calls_for("update") == []


def _update_dates(mutation):
    """Move t1 to 11:00-12:00; returns the scheduled asyncio task."""
    return mutation.update_dates("t1", at(11), at(12))


async def _move(mutation):
    return await _update_dates(mutation)


class TestDelete:
    """Tests for optimistic deletion and the delete blacklist."""

    def test_refresh_during_delete_cannot_resurrect(self, store, service, notifier, refresher, sample_task):
        store.put(sample_task)
        service.tasks["t1"] = sample_task
        service.gates["delete"] = asyncio.Event()
        mutation = DeleteTaskMutation(store, service, notifier)

        async def scenario():
            pending = mutation.delete("t1")
            assert "t1" not in store
            assert store.is_blacklisted("t1")

            # Server still has the task
            result = await refresher.refresh()
            assert result.skipped_blacklisted == ["t1"]
            assert "t1" not in store

            service.gates["delete"].set()
            return await pending

        result = asyncio.run(scenario())
        assert result.ok
        assert "t1" not in store
        assert not store.is_blacklisted("t1")
        assert mutation.deleted_tasks() == []

    def test_failure_restores_in_creation_order(self, store, service, notifier):
        store.put(make_task("a", at(9), at(10), created_at=created(1)))
        store.put(make_task("t1", at(9), at(10), created_at=created(10)))
        store.put(make_task("c", at(9), at(10), created_at=created(20)))
        service.errors["delete"] = ConflictError("Task is locked", status_code=409)
        mutation = DeleteTaskMutation(store, service, notifier)

        result = asyncio.run(mutation.mutate_async("t1"))
        assert not result.ok
        assert store.ids() == ["a", "t1", "c"]
        assert not store.is_blacklisted("t1")
        assert notifier.last("error").title == "Could not delete task"

    def test_unconfirmed_deletes_can_be_restored(self, store, service, notifier, sample_task):
        store.put(sample_task)
        service.gates["delete"] = asyncio.Event()
        mutation = DeleteTaskMutation(store, service, notifier)

        async def scenario():
            pending = mutation.delete("t1")
            assert mutation.deleted_tasks() == [sample_task]
            assert mutation.restore_deleted("t1")
            assert store.get("t1") is sample_task
            assert not store.is_blacklisted("t1")
            assert not mutation.restore_deleted("t1")
            service.gates["delete"].set()
            await pending

        asyncio.run(scenario())
        assert not mutation.has_deleted_tasks

    def test_delete_many(self, store, service, notifier):
        for task_id in ("a", "b"):
            store.put(make_task(task_id, at(9), at(10)))
        mutation = DeleteTaskMutation(store, service, notifier)

        async def scenario():
            await asyncio.gather(*mutation.delete_many(["a", "b"]))

        asyncio.run(scenario())
        assert len(store) == 0
        assert [call[1] for call in service.calls_for("delete")] == ["a", "b"]


class TestSettledRefresh:
    def test_successful_mutation_schedules_a_reconcile(self, store, service, notifier, sample_task):
        store.put(sample_task)
        service.tasks["t1"] = sample_task
        refresher = TaskRefresher(store, service, reconcile_delay=0.01)
        refresher.loaded_ranges = [TimeRange(at(0), at(23, 59))]
        mutation = UpdateTaskMutation(store, service, notifier, refresher=refresher)

        async def scenario():
            await mutation.update("t1", title="Renamed")
            await asyncio.sleep(0.05)
            await refresher.stop()

        asyncio.run(scenario())
        assert len(service.calls_for("fetch")) == 1
