"""HTTP transport for the ReqFlow Core API.

Wraps an httpx.AsyncClient and turns error responses back into the shared
error taxonomy (ValidationError, NotFoundError, ConflictError,
RateLimitError, StoreError, ...).
"""
import json
import logging
from typing import Any, AsyncIterator, Optional
from uuid import UUID

import httpx
from pydantic_core import to_jsonable_python

from reqflow_core.errors import error_for_status
from reqflow_core.schemas import ChangeEvent

logger = logging.getLogger("reqflow-client.api")


def _params(filters: Optional[dict[str, Any]]) -> dict[str, str]:
    """Query parameters from filters; None values are left out entirely."""
    return {key: str(to_jsonable_python(value)) for key, value in (filters or {}).items() if value is not None}


class ApiClient:
    """
    Async client for the /api/db endpoints.

    Args:
        base_url: API root (e.g. http://localhost:8000)
        transport: Optional httpx transport (ASGITransport / MockTransport in tests)
        timeout: Request timeout in seconds
        headers: Extra headers sent with every request
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        headers: Optional[dict[str, str]] = None,
    ):
        self.timeout = timeout
        self._client = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout, headers=headers)

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if not response.is_error:
            return
        try:
            body = response.json()
            message = body.get("error") or body.get("detail") or response.reason_phrase
            retry_after = body.get("retryAfter")
        except (ValueError, AttributeError):
            message = response.text or response.reason_phrase
            retry_after = None
        if retry_after is None and "retry-after" in response.headers:
            retry_after = int(response.headers["retry-after"])
        logger.warning(f"{response.request.method} {response.request.url.path} -> {response.status_code}: {message}")
        raise error_for_status(response.status_code, str(message), retry_after)

    async def get_one(self, path: str, entity_id: UUID | str) -> dict:
        response = await self._client.get(path, params={"id": str(entity_id)})
        self._raise_for_status(response)
        return response.json()

    async def list(self, path: str, filters: Optional[dict[str, Any]] = None) -> list[dict]:
        response = await self._client.get(path, params=_params(filters))
        self._raise_for_status(response)
        return response.json()

    async def create(self, path: str, payload: dict[str, Any]) -> dict:
        response = await self._client.post(path, json=to_jsonable_python(payload))
        self._raise_for_status(response)
        return response.json()

    async def update(self, path: str, payload: dict[str, Any]) -> dict:
        response = await self._client.put(path, json=to_jsonable_python(payload))
        self._raise_for_status(response)
        return response.json()

    async def delete(self, path: str, entity_id: UUID | str) -> None:
        response = await self._client.delete(path, params={"id": str(entity_id)})
        self._raise_for_status(response)

    async def stream_changes(self, path: str, filters: Optional[dict[str, Any]] = None) -> AsyncIterator[ChangeEvent]:
        """
        Subscribe to row changes and yield them as they arrive.

        The iterator ends when the server closes the stream; there is no
        automatic reconnect and changes missed while disconnected are not
        replayed.
        """
        params = _params(filters)
        params["subscribe"] = "true"
        timeout = httpx.Timeout(self.timeout, read=None)
        async with self._client.stream("GET", path, params=params, timeout=timeout) as response:
            if response.is_error:
                await response.aread()
                self._raise_for_status(response)

            data_lines: list[str] = []
            async for line in response.aiter_lines():
                if line.startswith("data:"):
                    data_lines.append(line[5:].lstrip(" "))
                elif line == "" and data_lines:
                    yield ChangeEvent.model_validate(json.loads("\n".join(data_lines)))
                    data_lines = []
                # Comment lines (": keep-alive") and other fields are ignored
            if data_lines:
                yield ChangeEvent.model_validate(json.loads("\n".join(data_lines)))
        logger.info(f"Change stream on {path} closed")
