"""
Chat/operator persistence — the narrow save/update/list interface the core
calls on the CRM application. Storage format is the application's business.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from zapdesk.models.attendance import ChatRequest
from zapdesk.transport.http import HttpClient

logger = logging.getLogger("zapdesk.datastore")


def _record(request: ChatRequest) -> dict[str, Any]:
    return request.model_dump(mode="json", by_alias=True, exclude_none=True)


class HttpDatastore:
    """Datastore backed by the CRM REST API."""

    def __init__(self, http: HttpClient):
        self._http = http

    async def save_chat_request(self, request: ChatRequest) -> None:
        await self._http.post("/attendances", _record(request))

    async def update_chat_request(self, request: ChatRequest) -> None:
        await self._http.put(f"/attendances/{request.id}", _record(request))

    async def list_operators(self) -> list[dict[str, Any]]:
        result = await self._http.get("/operators")
        if isinstance(result, dict):
            result = result.get("operators", [])
        return list(result or [])

    async def close(self) -> None:
        await self._http.close()


class MemoryDatastore:
    """In-process datastore, for running without the CRM API and for tests."""

    def __init__(self, operators: list[dict[str, Any]] | None = None):
        self.chat_requests: dict[str, dict[str, Any]] = {}
        self.operators = list(operators or [])
        self.writes: list[tuple[str, str]] = []

    async def save_chat_request(self, request: ChatRequest) -> None:
        self.chat_requests[request.id] = _record(request)
        self.writes.append(("save", request.id))

    async def update_chat_request(self, request: ChatRequest) -> None:
        self.chat_requests[request.id] = _record(request)
        self.writes.append(("update", request.id))

    async def list_operators(self) -> list[dict[str, Any]]:
        return list(self.operators)

    async def close(self) -> None:
        pass


class DatastoreSync:
    """Router transition handler that mirrors chat requests into a datastore.

    Writes run as background tasks on the running loop, in order per chat;
    failures are logged and the in-memory router keeps serving.
    """

    def __init__(self, datastore: Any):
        self._datastore = datastore
        self._tasks: set[asyncio.Task[None]] = set()
        self._last: dict[str, asyncio.Task[None]] = {}

    def on_transition(self, kind: str, request: ChatRequest, _chat: Any = None) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop – {kind} {request.id} not persisted")
            return
        task = loop.create_task(self._write(kind, request, self._last.get(request.id)))
        self._last[request.id] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(lambda t: self._forget(request.id, t))

    def _forget(self, chat_id: str, task: asyncio.Task[None]) -> None:
        if self._last.get(chat_id) is task:
            del self._last[chat_id]

    async def _write(self, kind: str, request: ChatRequest, previous: asyncio.Task[None] | None) -> None:
        if previous is not None:
            await previous
        try:
            if kind == "enqueued":
                await self._datastore.save_chat_request(request)
            else:
                await self._datastore.update_chat_request(request)
        except Exception as e:
            logger.warning(f"Datastore {kind} for {request.id} failed: {e}")

    async def drain(self) -> None:
        """Wait for every pending write."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
