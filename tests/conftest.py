"""Shared pytest fixtures for the Nevermore CLI test suite.

Provides reusable fixtures for:
- Project directories with a `nevermore.json` and a built bundle
- httpx clients backed by `httpx.MockTransport`
- A scripted graphql-transport-ws websocket
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest


# ---------------------------------------------------------------------------
# Project files
# ---------------------------------------------------------------------------

WORKER_CONFIG = {
    "name": "my-worker",
    "description": "test",
    "workerPath": "dist/worker.bundle.js",
    "graphqlEndpoint": "http://localhost:8000/graphql",
    "enabled": True,
}


@pytest.fixture
def worker_project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A worker project with a config and a built bundle; cwd is the project."""
    project = tmp_path / "my-worker"
    (project / "dist").mkdir(parents=True)
    (project / "dist" / "worker.bundle.js").write_text("console.log('tick');\n", encoding="utf-8")
    (project / "nevermore.json").write_text(json.dumps(WORKER_CONFIG), encoding="utf-8")
    monkeypatch.chdir(project)
    yield project


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)


@pytest.fixture
def recording_transport():
    """Factory: ``recording_transport(handler)`` -> (transport, AsyncClient)."""
    def factory(handler: Callable[[httpx.Request], httpx.Response]):
        transport = RecordingTransport(handler)
        return transport, httpx.AsyncClient(transport=transport)

    return factory


def graphql_operation(request: httpx.Request) -> str:
    """Name of the mutation in a GraphQL POST body (``createWorker`` etc.)."""
    query = json.loads(request.content)["query"]
    return query.split("mutation", 1)[1].split("(")[0].split("{")[0].strip()


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------

class FakeWebSocket:
    """Server side of a graphql-transport-ws conversation.

    Acknowledges ``connection_init``, then answers ``subscribe`` with one
    ``next`` per scripted record followed by ``complete`` (or ``error``).
    Raw ``frames`` are sent verbatim before the records.
    """

    def __init__(
        self,
        records: list[dict[str, Any]],
        *,
        error: Any = None,
        complete: bool = True,
        frames: list[str] | None = None,
    ):
        self.records = records
        self.frames = frames or []
        self.error = error
        self.complete = complete
        self.sent: list[dict[str, Any]] = []
        self.url: str | None = None
        self.connect_kwargs: dict[str, Any] = {}
        self._inbox: asyncio.Queue = asyncio.Queue()

    def connect(self, url: str, **kwargs: Any) -> "FakeWebSocket":
        self.url = url
        self.connect_kwargs = kwargs
        return self

    async def __aenter__(self) -> "FakeWebSocket":
        return self

    async def __aexit__(self, *exc: Any) -> bool:
        return False

    async def send(self, raw: str):
        message = json.loads(raw)
        self.sent.append(message)
        if message["type"] == "connection_init":
            await self._inbox.put({"type": "ping"})
            await self._inbox.put({"type": "connection_ack"})
        elif message["type"] == "subscribe":
            sub_id = message["id"]
            for frame in self.frames:
                await self._inbox.put(frame)
            for record in self.records:
                await self._inbox.put({"id": sub_id, "type": "next", "payload": {"data": record}})
            if self.error is not None:
                await self._inbox.put({"id": sub_id, "type": "error", "payload": self.error})
            elif self.complete:
                await self._inbox.put({"id": sub_id, "type": "complete"})

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        return item if isinstance(item, str) else json.dumps(item)


@pytest.fixture
def fake_ws():
    """Factory: ``fake_ws(records, error=None)`` -> FakeWebSocket."""
    return FakeWebSocket
