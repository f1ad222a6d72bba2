"""GraphQL request and subscription layer for the Nevermore server.

Requests are plain JSON POSTs sent with httpx. Subscriptions speak the
``graphql-transport-ws`` protocol over a websocket.
"""

import asyncio
import json
import ssl
import uuid
from dataclasses import dataclass
from typing import Any, Callable

import httpx
import websockets
from websockets.exceptions import WebSocketException
from rich.markup import escape

from .errors import NevermoreError
from .ui import console, err_console

GRAPHQL_WS_PROTOCOL = "graphql-transport-ws"

CREATE_WORKER = """
mutation createWorker(
  $name: String!
  $description: String!
  $code: String!
  $enabled: Boolean!
) {
  createWorker(
    params: {
      name: $name
      description: $description
      code: $code
      enabled: $enabled
    }
  )
}
"""

RESTART_WORKER = """
mutation restartWorker {
  restartWorker
}
"""

CREATE_PLUGIN = """
mutation createPlugin(
  $name: String!
  $readme: String!
  $code: String!
  $enabled: Boolean!
  $author: String!
  $email: String!
  $url: String!
  $pluginType: String!
  $hasFrontend: Boolean!
  $frontendCode: String!
) {
  createPlugin(
    params: {
      name: $name
      readme: $readme
      code: $code
      enabled: $enabled
      author: $author
      email: $email
      url: $url
      pluginType: $pluginType
      hasFrontend: $hasFrontend
      frontendCode: $frontendCode
    }
  )
}
"""

RESTART_PLUGINS = """
mutation restartPlugins {
  restartPlugins
}
"""

WORKER_LOG_SUBSCRIPTION = "subscription { log { message level callingFunction fileName dateTime } }"
PLUGIN_LOG_SUBSCRIPTION = "subscription { devLog { message dateTime } }"


class GraphQLError(NevermoreError):
    """A request or subscription failed at the transport or GraphQL level."""

    title = "GraphQL Error"


@dataclass(frozen=True)
class LogRecord:
    message: str
    date_time: str = ""
    level: str | None = None
    calling_function: str | None = None
    file_name: str | None = None

    @classmethod
    def from_payload(cls, data: dict) -> "LogRecord":
        """Build a record from the ``data`` of a ``log`` or ``devLog`` event."""
        record = data.get("log") or data.get("devLog") or {}
        return cls(
            message=str(record.get("message") or ""),
            date_time=str(record.get("dateTime") or ""),
            level=record.get("level"),
            calling_function=record.get("callingFunction"),
            file_name=record.get("fileName"),
        )

    def render(self) -> str:
        """Rich markup for one console line."""
        parts = [f"[bold blue][{escape(self.date_time)}][/bold blue]"]
        if self.file_name is not None or self.calling_function is not None:
            parts.append(f"[bold green]<{escape(str(self.file_name))} | {escape(str(self.calling_function))}>[/bold green]")
        # Messages arrive with the trailing newline of the remote logger
        parts.append(escape(self.message.rstrip("\n")))
        return " ".join(parts)


def print_log_record(data: dict):
    console.print(LogRecord.from_payload(data).render(), highlight=False)


class GraphQLClient:
    """Minimal request/response GraphQL client over an `httpx.AsyncClient`."""

    def __init__(self, endpoint: str, client: httpx.AsyncClient, timeout: float = 30):
        self.endpoint = endpoint
        self._client = client
        self.timeout = timeout

    async def request(self, query: str, variables: dict[str, Any] | None = None) -> dict:
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables
        try:
            response = await self._client.post(self.endpoint, json=payload, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise GraphQLError(f"Request to {self.endpoint} failed: {e}") from e

        if response.status_code != 200:
            raise GraphQLError(f"{self.endpoint} returned {response.status_code}\nBody (truncated 400): {response.text[:400]}")
        try:
            body = response.json()
        except ValueError as e:
            raise GraphQLError(f"Failed to parse response JSON: {e}\nRaw (truncated 400): {response.text[:400]}") from e

        errors = body.get("errors")
        if errors:
            messages = [str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in errors]
            raise GraphQLError("\n".join(messages))
        return body.get("data") or {}


def _decode_message(raw) -> dict:
    try:
        message = json.loads(raw)
    except ValueError as e:
        raise GraphQLError(f"Malformed message from the log stream: {e}") from e
    if not isinstance(message, dict):
        raise GraphQLError(f"Malformed message from the log stream: expected an object, got {type(message).__name__}")
    return message


async def subscribe(
    url: str,
    query: str,
    on_data: Callable[[dict], None],
    *,
    ssl_context: ssl.SSLContext | None = None,
    connect=websockets.connect,
):
    """Run one subscription until the server completes it.

    ``on_data`` is called with the ``data`` member of every ``next`` message,
    in arrival order.

    Raises:
        GraphQLError: the server rejected the subscription or the socket failed.
    """
    kwargs: dict[str, Any] = {"subprotocols": [GRAPHQL_WS_PROTOCOL]}
    if url.startswith("wss://") and ssl_context is not None:
        kwargs["ssl"] = ssl_context

    subscription_id = str(uuid.uuid4())
    try:
        async with connect(url, **kwargs) as ws:
            await ws.send(json.dumps({"type": "connection_init", "payload": {}}))
            async for raw in ws:
                message = _decode_message(raw)
                kind = message.get("type")
                if kind == "connection_ack":
                    console.print("[bold green]Successfully connected to the Nevermore Logger.[/bold green]")
                    await ws.send(json.dumps({
                        "id": subscription_id,
                        "type": "subscribe",
                        "payload": {"query": query},
                    }))
                elif kind == "ping":
                    await ws.send(json.dumps({"type": "pong"}))
                elif kind == "next" and message.get("id") == subscription_id:
                    payload = message.get("payload")
                    data = payload.get("data") if isinstance(payload, dict) else None
                    on_data(data if isinstance(data, dict) else {})
                elif kind == "error":
                    raise GraphQLError(f"Subscription rejected: {message.get('payload')}")
                elif kind == "complete" and message.get("id") == subscription_id:
                    return
    except (OSError, WebSocketException) as e:
        raise GraphQLError(f"Log stream at {url} failed: {e}") from e


class LogSubscription:
    """Handle on a running log subscription task."""

    def __init__(self, task: asyncio.Task):
        self._task = task

    @classmethod
    def start(cls, url: str, query: str, on_data: Callable[[dict], None] = print_log_record, **kwargs) -> "LogSubscription":
        return cls(asyncio.create_task(_run_subscription(url, query, on_data, **kwargs)))

    def cancel(self):
        self._task.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> bool:
        """Wait for the stream to end; True when it completed cleanly."""
        try:
            return await self._task
        except asyncio.CancelledError:
            if asyncio.current_task().cancelling():
                raise
            return False


async def _run_subscription(url: str, query: str, on_data: Callable[[dict], None], **kwargs) -> bool:
    try:
        await subscribe(url, query, on_data, **kwargs)
    except GraphQLError as e:
        err_console.print(f"[red]Log stream closed:[/red] {escape(str(e))}")
        return False
    return True
