"""Server-Sent Events session management for the two-leg MCP transport.

A client opens ``GET /mcp/sse`` and receives an ``endpoint`` event naming the
path it must POST JSON-RPC messages to. Responses to those POSTs travel back
as ``message`` events on the original stream, interleaved with periodic
``ping`` keep-alives.

Each connection owns one bounded outbound queue. The streaming response is its
only consumer, so frames from the keep-alive task and from POST relays never
interleave and are delivered in the order they were enqueued.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import enum
import json
import logging
import threading
import uuid
from contextlib import suppress
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    OPEN = "open"
    ACTIVE = "active"
    CLOSED = "closed"


def utc_timestamp() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z")


def format_sse_event(event: str, data: Any) -> str:
    """Render one SSE frame. Strings go out verbatim, anything else as JSON."""
    if isinstance(data, str):
        payload = data
    else:
        payload = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    data_lines = "".join(f"data: {line}\n" for line in payload.split("\n"))
    return f"event: {event}\n{data_lines}\n"


class SSEConnection:
    def __init__(self, connection_id: str, client_id: str, *, max_queued_events: int) -> None:
        self.connection_id = connection_id
        self.client_id = client_id
        self.created_at = dt.datetime.now(dt.timezone.utc)
        self.state = ConnectionState.OPEN
        self._outbox: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=max_queued_events)

    @property
    def is_closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    def send_event(self, event: str, data: Any) -> bool:
        """Queue an event for delivery; failures are logged, never raised."""
        if self.is_closed:
            logger.warning(
                "Dropping '%s' event for closed SSE connection %s", event, self.connection_id
            )
            return False
        try:
            self._outbox.put_nowait(format_sse_event(event, data))
        except asyncio.QueueFull:
            logger.warning(
                "Outbound queue full for SSE connection %s; dropping '%s' event",
                self.connection_id,
                event,
            )
            return False
        except Exception:
            logger.exception("Error queueing '%s' event for SSE connection %s", event, self.connection_id)
            return False
        return True

    async def next_frame(self) -> Optional[str]:
        if self.is_closed:
            return None
        return await self._outbox.get()

    def close(self) -> None:
        if self.is_closed:
            return
        self.state = ConnectionState.CLOSED
        # Wake a reader blocked on an empty queue.
        with suppress(asyncio.QueueFull):
            self._outbox.put_nowait(None)

    def describe(self) -> Dict[str, Any]:
        return {
            "connection_id": self.connection_id,
            "client_id": self.client_id,
            "created_at": self.created_at.isoformat(),
            "state": self.state.value,
        }


class SSEConnectionManager:
    """Owns the registry of live SSE connections."""

    def __init__(self, *, ping_interval: float = 30.0, max_queued_events: int = 256) -> None:
        self.ping_interval = ping_interval
        self.max_queued_events = max_queued_events
        self._connections: Dict[str, SSEConnection] = {}
        self._lock = threading.Lock()

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def get(self, connection_id: str) -> Optional[SSEConnection]:
        with self._lock:
            return self._connections.get(connection_id)

    def list_connections(self) -> List[SSEConnection]:
        with self._lock:
            return list(self._connections.values())

    def send_event(self, connection_id: str, event: str, data: Any) -> bool:
        connection = self.get(connection_id)
        if connection is None:
            logger.warning("Cannot send '%s' event; SSE connection %s not found", event, connection_id)
            return False
        return connection.send_event(event, data)

    def broadcast(self, event: str, data: Any) -> int:
        delivered = sum(1 for connection in self.list_connections() if connection.send_event(event, data))
        logger.debug("Broadcast '%s' event to %d SSE connections", event, delivered)
        return delivered

    def close_all(self) -> None:
        connections = self.list_connections()
        for connection in connections:
            connection.close()
        if connections:
            logger.info("Closed %d SSE connections", len(connections))

    async def stream(self, client_id: str, endpoint_for: Callable[[str], str]) -> AsyncIterator[str]:
        """Yield SSE frames for one connection until it is closed or cancelled.

        Registration happens inside the generator so a connection exists in the
        registry exactly as long as its stream is being served.
        """
        connection = self._register(client_id)
        keepalive: Optional[asyncio.Task[None]] = None
        try:
            endpoint = endpoint_for(connection.connection_id)
            connection.send_event("endpoint", endpoint)
            connection.state = ConnectionState.ACTIVE
            logger.info(
                "SSE connection established: %s, endpoint: %s", connection.connection_id, endpoint
            )
            keepalive = asyncio.create_task(
                self._keepalive(connection),
                name=f"sse-keepalive-{connection.connection_id}",
            )
            while True:
                frame = await connection.next_frame()
                if frame is None:
                    break
                yield frame
        except asyncio.CancelledError:
            logger.info("SSE client disconnected: %s", connection.connection_id)
            raise
        finally:
            self._deregister(connection)
            if keepalive is not None:
                keepalive.cancel()
                with suppress(asyncio.CancelledError):
                    await keepalive

    async def _keepalive(self, connection: SSEConnection) -> None:
        while not connection.is_closed:
            await asyncio.sleep(self.ping_interval)
            connection.send_event("ping", {"timestamp": utc_timestamp()})

    def _register(self, client_id: str) -> SSEConnection:
        with self._lock:
            connection_id = str(uuid.uuid4())
            while connection_id in self._connections:
                connection_id = str(uuid.uuid4())
            connection = SSEConnection(
                connection_id,
                client_id,
                max_queued_events=self.max_queued_events,
            )
            self._connections[connection_id] = connection
        logger.info("Added SSE connection %s for client %s", connection_id, client_id)
        return connection

    def _deregister(self, connection: SSEConnection) -> None:
        connection.close()
        with self._lock:
            removed = self._connections.pop(connection.connection_id, None)
        if removed is not None:
            logger.info("Removed SSE connection %s", connection.connection_id)
