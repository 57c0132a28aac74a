"""
Task fetching and writes against the remote task service.

Wire shape: camelCase fields, the time window nested under
``workPeriod.startDate/endDate``, optional ``{success, data}`` envelopes, and
a ``_pendingSync`` flag on writes accepted before they reached Notion.
"""

import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError as ModelValidationError

from core.config import CALENDAR_TASKS_PATH, TASKS_PATH
from core.errors import ValidationError
from core.task_client import get_task_client
from models.responses import PendingSync
from models.tasks import Task, TaskCreatePayload, TaskUpdate

logger = logging.getLogger(__name__)

# Display-only data never sent to the server
_ENRICHED_FIELDS = {"project_data", "client_data", "assigned_members_data"}


# =============================================================================
# READS
# =============================================================================


async def fetch_calendar_tasks(start: datetime, end: datetime) -> list[Task]:
    """
    Fetch all tasks whose work period falls within [start, end].

    Tasks the server returns without a usable time window are skipped.
    """
    client = get_task_client()
    body = await client.request_json(
        "GET",
        CALENDAR_TASKS_PATH,
        params={"startDate": start.isoformat(), "endDate": end.isoformat()},
    )
    data = _unwrap(body)
    raw_tasks = data.get("tasks", []) if isinstance(data, dict) else data or []

    tasks = []
    for raw in raw_tasks:
        try:
            tasks.append(parse_task(raw))
        except ModelValidationError as e:
            logger.warning("Skipping task %s: %s", raw.get("id", "?"), e.errors()[0]["msg"])
    return tasks


async def get_task(task_id: str) -> Task:
    client = get_task_client()
    body = await client.request_json("GET", f"{TASKS_PATH}/{task_id}")
    return parse_task(_unwrap(body))


# =============================================================================
# WRITES
# =============================================================================


async def create_task(payload: TaskCreatePayload) -> Task | PendingSync:
    client = get_task_client()
    body = await client.request_json("POST", TASKS_PATH, json_body=payload_to_wire(payload))
    return parse_write_response(body)


async def update_task(task_id: str, update: TaskUpdate) -> Task | PendingSync:
    client = get_task_client()
    body = await client.request_json(
        "PUT", f"{TASKS_PATH}/{task_id}", json_body=update_to_wire(update)
    )
    return parse_write_response(body, task_id=task_id)


async def delete_task(task_id: str) -> None:
    client = get_task_client()
    await client.request_json("DELETE", f"{TASKS_PATH}/{task_id}")


# =============================================================================
# WIRE CONVERSION
# =============================================================================


def parse_task(raw: dict[str, Any]) -> Task:
    """Parse a wire task (camelCase, nested workPeriod) into a Task."""
    data = {key: value for key, value in raw.items() if value is not None}
    work_period = data.pop("workPeriod", None) or {}
    data.setdefault("startDate", work_period.get("startDate"))
    data.setdefault("endDate", work_period.get("endDate"))
    data.pop("_pendingSync", None)
    return Task.model_validate(data)


def parse_write_response(body: Any, task_id: str | None = None) -> Task | PendingSync:
    """
    Interpret a create/update response.

    A body carrying a truthy ``_pendingSync`` flag is an acknowledgement only:
    the caller keeps its optimistic value. Anything else must be a complete task.
    """
    data = _unwrap(body)
    if not isinstance(data, dict):
        raise ValidationError("Task API returned an unexpected payload shape")

    if data.get("_pendingSync"):
        return PendingSync(id=data.get("id") or task_id)

    try:
        task = parse_task(data)
    except ModelValidationError as e:
        raise ValidationError(f"Task API returned an invalid task: {e.errors()[0]['msg']}") from e

    if task.conflicts:
        logger.warning("Task %s saved with %d conflict(s)", task.id, len(task.conflicts))
        for conflict in task.conflicts:
            logger.warning("  %s: %s", conflict.type, conflict.message)
    return task


def payload_to_wire(payload: TaskCreatePayload) -> dict[str, Any]:
    body = payload.model_dump(by_alias=True, mode="json", exclude_none=True, exclude=_ENRICHED_FIELDS)
    return _nest_work_period(body)


def update_to_wire(update: TaskUpdate) -> dict[str, Any]:
    body = update.model_dump(by_alias=True, mode="json", exclude_unset=True, exclude=_ENRICHED_FIELDS)
    return _nest_work_period(body)


def _nest_work_period(body: dict[str, Any]) -> dict[str, Any]:
    work_period = {}
    for key in ("startDate", "endDate"):
        if key in body:
            work_period[key] = body.pop(key)
    if work_period:
        body["workPeriod"] = work_period
    return body


def _unwrap(body: Any) -> Any:
    """Strip a {success, data} envelope if present."""
    if isinstance(body, dict) and "success" in body and "data" in body:
        return body["data"]
    return body
