"""
Tests for the task service client and wire conversion.
"""

import asyncio
import json
from datetime import datetime

import httpx
import pytest

from core.errors import ConflictError, NetworkError, PermissionDeniedError, ValidationError
from core.task_client import TaskClient, set_task_client
from models.responses import PendingSync
from models.tasks import ProjectRef, TaskCreatePayload, TaskUpdate
from services import calendar

WIRE_TASK = {
    "id": "srv-42",
    "title": "Shooting",
    "workPeriod": {"startDate": "2025-11-03T09:00:00", "endDate": "2025-11-03T11:30:00"},
    "assignedMembers": ["m-alice"],
    "assignedMembersData": [{"id": "m-alice", "name": "Alice Martin"}],
    "status": "in_progress",
    "taskType": "task",
    "projectId": "p-site",
    "projectData": {"id": "p-site", "name": "Website redesign"},
    "createdAt": "2025-10-01T08:00:00Z",
}


class MockService:
    """Routes requests to a handler and records them."""

    def __init__(self, handler):
        self.handler = handler
        self.requests: list[httpx.Request] = []
        self.sleeps: list[float] = []

    def __call__(self, request):
        self.requests.append(request)
        return self.handler(request)

    async def sleep(self, seconds):
        self.sleeps.append(seconds)


@pytest.fixture
def mock_service():
    """Install a TaskClient backed by httpx.MockTransport; set .handler per test."""
    mock = MockService(lambda request: httpx.Response(200, json={}))
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(mock), base_url="http://tasks.test")
    set_task_client(TaskClient(http_client, sleep=mock.sleep))
    yield mock
    set_task_client(None)


def run(coro):
    return asyncio.run(coro)


class TestFetch:
    def test_parses_envelope_and_work_period(self, mock_service):
        mock_service.handler = lambda r: httpx.Response(200, json={"success": True, "data": {"tasks": [WIRE_TASK]}})

        (task,) = run(calendar.fetch_calendar_tasks(datetime(2025, 11, 3), datetime(2025, 11, 4)))
        assert task.id == "srv-42"
        assert task.start_date == datetime(2025, 11, 3, 9)
        assert task.end_date == datetime(2025, 11, 3, 11, 30)
        assert task.assigned_members == ("m-alice",)
        assert task.project_data == ProjectRef(id="p-site", name="Website redesign")

        request = mock_service.requests[0]
        assert request.url.path == "/tasks/calendar"
        assert request.url.params["startDate"] == "2025-11-03T00:00:00"

    def test_plain_list_body(self, mock_service):
        mock_service.handler = lambda r: httpx.Response(200, json=[WIRE_TASK])
        assert len(run(calendar.fetch_calendar_tasks(datetime(2025, 11, 3), datetime(2025, 11, 4)))) == 1

    def test_tasks_without_window_are_skipped(self, mock_service):
        broken = {"id": "bad", "title": "No dates"}
        mock_service.handler = lambda r: httpx.Response(200, json={"tasks": [broken, WIRE_TASK]})
        tasks = run(calendar.fetch_calendar_tasks(datetime(2025, 11, 3), datetime(2025, 11, 4)))
        assert [t.id for t in tasks] == ["srv-42"]


class TestWrites:
    def test_create_sends_nested_window_without_display_data(self, mock_service):
        mock_service.handler = lambda r: httpx.Response(201, json={"success": True, "data": WIRE_TASK})
        payload = TaskCreatePayload(
            title="Shooting",
            start_date=datetime(2025, 11, 3, 9),
            end_date=datetime(2025, 11, 3, 11, 30),
            assigned_members=("m-alice",),
            project_data=ProjectRef(id="p-site", name="Website redesign"),
        )

        task = run(calendar.create_task(payload))
        assert task.id == "srv-42"

        body = json.loads(mock_service.requests[0].content)
        assert body["workPeriod"] == {"startDate": "2025-11-03T09:00:00", "endDate": "2025-11-03T11:30:00"}
        assert body["assignedMembers"] == ["m-alice"]
        assert "projectData" not in body
        assert "startDate" not in body

    def test_update_sends_only_set_fields(self, mock_service):
        mock_service.handler = lambda r: httpx.Response(200, json=WIRE_TASK)
        run(calendar.update_task("srv-42", TaskUpdate(title="Renamed")))

        request = mock_service.requests[0]
        assert request.method == "PUT"
        assert request.url.path == "/notion/traffic/tasks/srv-42"
        assert json.loads(request.content) == {"title": "Renamed"}

    def test_pending_sync_response(self, mock_service):
        mock_service.handler = lambda r: httpx.Response(200, json={"success": True, "data": {"_pendingSync": True}})
        result = run(calendar.update_task("srv-42", TaskUpdate(status="completed")))
        assert isinstance(result, PendingSync)
        assert result.id == "srv-42"

    def test_falsy_pending_sync_is_a_normal_task(self, mock_service):
        mock_service.handler = lambda r: httpx.Response(200, json={**WIRE_TASK, "_pendingSync": False})
        result = run(calendar.update_task("srv-42", TaskUpdate(status="completed")))
        assert result.id == "srv-42"

    def test_invalid_task_in_response(self, mock_service):
        mock_service.handler = lambda r: httpx.Response(200, json={"id": "srv-42"})
        with pytest.raises(ValidationError):
            run(calendar.update_task("srv-42", TaskUpdate(title="x")))

    def test_delete_with_empty_body(self, mock_service):
        mock_service.handler = lambda r: httpx.Response(204)
        assert run(calendar.delete_task("srv-42")) is None
        assert mock_service.requests[0].method == "DELETE"


class TestErrors:
    @pytest.mark.parametrize(
        "status,error_type",
        [
            (400, ValidationError),
            (404, ValidationError),
            (401, PermissionDeniedError),
            (403, PermissionDeniedError),
            (409, ConflictError),
            (500, NetworkError),
        ],
    )
    def test_status_maps_to_error_kind(self, mock_service, status, error_type):
        mock_service.handler = lambda r: httpx.Response(
            status, json={"error": "Nope", "code": "SOME_CODE", "details": ["field"]}
        )
        with pytest.raises(error_type) as exc_info:
            run(calendar.delete_task("srv-42"))
        assert exc_info.value.message == "Nope"
        assert exc_info.value.code == "SOME_CODE"
        assert exc_info.value.status_code == status

    def test_non_json_error_body(self, mock_service):
        mock_service.handler = lambda r: httpx.Response(502, text="Bad gateway")
        with pytest.raises(NetworkError) as exc_info:
            run(calendar.delete_task("srv-42"))
        assert "502" in exc_info.value.message

    def test_transport_failure_is_a_network_error(self, mock_service):
        def fail(request):
            raise httpx.ConnectError("connection refused", request=request)

        mock_service.handler = fail
        with pytest.raises(NetworkError):
            run(calendar.delete_task("srv-42"))


class TestRateLimit:
    def test_429_retries_with_retry_after(self, mock_service):
        responses = iter(
            [
                httpx.Response(429, headers={"Retry-After": "2"}),
                httpx.Response(503),
                httpx.Response(200, json=WIRE_TASK),
            ]
        )
        mock_service.handler = lambda r: next(responses)

        task = run(calendar.update_task("srv-42", TaskUpdate(title="x")))
        assert task.id == "srv-42"
        assert mock_service.sleeps == [2.0, 2.0]
        assert len(mock_service.requests) == 3

    def test_gives_up_after_max_retries(self, mock_service):
        mock_service.handler = lambda r: httpx.Response(429)
        with pytest.raises(NetworkError):
            run(calendar.delete_task("srv-42"))
        assert len(mock_service.requests) == 4
        assert mock_service.sleeps == [1.0, 2.0, 4.0]
