"""
Task service HTTP client with lazy initialization.
"""

import asyncio
import logging
from typing import Any

import httpx

from core.config import (
    RATE_LIMIT_BASE_BACKOFF_SECONDS,
    RATE_LIMIT_MAX_RETRIES,
    RATE_LIMIT_RETRY_STATUS_CODES,
    TASK_API_TIMEOUT_SECONDS,
    TASK_API_TOKEN,
    TASK_API_URL,
)
from core.errors import NetworkError, error_for_status
from models.responses import ErrorResponse

logger = logging.getLogger(__name__)


class TaskClient:
    """Thin JSON wrapper around httpx.AsyncClient for the task service."""

    def __init__(self, http_client: httpx.AsyncClient, sleep=asyncio.sleep):
        self._http_client = http_client
        self._sleep = sleep

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        """
        Send a request and return the decoded JSON body (None for 204).

        Raises a core.errors taxonomy error for transport failures and
        non-2xx responses.
        """
        response = await self._request_once(method, path, params=params, json_body=json_body)

        # Rate-limit retry: honour Retry-After on 429, exponential backoff otherwise
        retry = 0
        while response.status_code in RATE_LIMIT_RETRY_STATUS_CODES and retry < RATE_LIMIT_MAX_RETRIES:
            backoff = RATE_LIMIT_BASE_BACKOFF_SECONDS * (2**retry)
            if response.status_code == 429:
                retry_after = response.headers.get("Retry-After")
                if retry_after is not None:
                    try:
                        backoff = float(retry_after)
                    except ValueError:
                        pass
            logger.warning(
                "Task API rate-limited (status=%d), retrying in %.1fs (attempt %d/%d)",
                response.status_code,
                backoff,
                retry + 1,
                RATE_LIMIT_MAX_RETRIES,
            )
            await self._sleep(backoff)
            response = await self._request_once(method, path, params=params, json_body=json_body)
            retry += 1

        if response.status_code < 200 or response.status_code >= 300:
            raise _error_from_response(response)

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as exc:
            raise NetworkError("Task API returned invalid JSON") from exc

    async def _request_once(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
    ) -> httpx.Response:
        try:
            return await self._http_client.request(method, path, params=params, json=json_body)
        except httpx.HTTPError as exc:
            raise NetworkError(f"Task API request failed: {exc}") from exc

    async def aclose(self) -> None:
        await self._http_client.aclose()


def _error_from_response(response: httpx.Response):
    """Map a non-2xx response onto the error taxonomy, reading ErrorResponse bodies."""
    message = f"Task API returned HTTP {response.status_code}"
    code = None
    details: list[str] = []
    try:
        body = ErrorResponse.model_validate(response.json())
        message, code, details = body.error, body.code, body.details
    except ValueError:
        pass
    return error_for_status(response.status_code, message, code=code, details=details)


_task_client: TaskClient | None = None


def get_task_client() -> TaskClient:
    """Get or create the task service client (lazy initialization)."""
    global _task_client
    if _task_client is None:
        headers = {"Accept": "application/json"}
        if TASK_API_TOKEN:
            headers["Authorization"] = f"Bearer {TASK_API_TOKEN}"
        _task_client = TaskClient(
            httpx.AsyncClient(
                base_url=TASK_API_URL,
                headers=headers,
                timeout=TASK_API_TIMEOUT_SECONDS,
            )
        )
    return _task_client


def set_task_client(client: TaskClient | None) -> None:
    """Install a preconfigured client (tests, scripts); None resets to lazy creation."""
    global _task_client
    _task_client = client
