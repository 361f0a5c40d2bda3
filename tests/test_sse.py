from __future__ import annotations

import asyncio
import json
from contextlib import suppress
from typing import Any, Dict, List, Optional

import httpx
import pytest

from mcp_scratch.core.dependencies import connection_manager_dependency, get_connection_manager
from mcp_scratch.main import app
from mcp_scratch.services.client import SSEEvent, SSEEventParser
from mcp_scratch.services.sse import (
    ConnectionState,
    SSEConnection,
    SSEConnectionManager,
    format_sse_event,
)


def _endpoint_for(connection_id: str) -> str:
    return f"/mcp/sse/{connection_id}"


def test_format_sse_event() -> None:
    assert format_sse_event("endpoint", "/mcp/sse/abc") == "event: endpoint\ndata: /mcp/sse/abc\n\n"
    assert format_sse_event("message", {"id": 1, "result": {}}) == 'event: message\ndata: {"id":1,"result":{}}\n\n'
    assert format_sse_event("note", "a\nb") == "event: note\ndata: a\ndata: b\n\n"


def test_stream_sends_endpoint_first_and_relays_in_order() -> None:
    async def scenario() -> None:
        manager = SSEConnectionManager(ping_interval=60)
        stream = manager.stream("client-a", _endpoint_for)

        first = await stream.__anext__()
        [connection] = manager.list_connections()
        assert first == f"event: endpoint\ndata: /mcp/sse/{connection.connection_id}\n\n"
        assert connection.client_id == "client-a"
        assert connection.state is ConnectionState.ACTIVE

        assert connection.send_event("message", {"jsonrpc": "2.0", "id": 1, "result": {}})
        assert manager.send_event(connection.connection_id, "message", {"jsonrpc": "2.0", "id": 2, "result": {}})
        assert await stream.__anext__() == 'event: message\ndata: {"jsonrpc":"2.0","id":1,"result":{}}\n\n'
        assert await stream.__anext__() == 'event: message\ndata: {"jsonrpc":"2.0","id":2,"result":{}}\n\n'

        await stream.aclose()
        assert manager.connection_count == 0
        assert manager.get(connection.connection_id) is None
        assert connection.is_closed
        assert connection.send_event("message", {}) is False

    asyncio.run(scenario())


def test_keepalive_pings_follow_the_interval() -> None:
    async def scenario() -> None:
        manager = SSEConnectionManager(ping_interval=0.01)
        stream = manager.stream("pinger", _endpoint_for)
        await stream.__anext__()
        frame = await asyncio.wait_for(stream.__anext__(), timeout=2)
        assert frame.startswith("event: ping\ndata: ")
        payload = json.loads(frame.split("data: ", 1)[1])
        assert payload["timestamp"].endswith("Z")
        await stream.aclose()

    asyncio.run(scenario())


def test_connection_ids_are_unique() -> None:
    async def scenario() -> None:
        manager = SSEConnectionManager(ping_interval=60)
        streams = [manager.stream(f"client-{n}", _endpoint_for) for n in range(5)]
        for stream in streams:
            await stream.__anext__()
        ids = {connection.connection_id for connection in manager.list_connections()}
        assert len(ids) == 5
        for stream in streams:
            await stream.aclose()
        assert manager.connection_count == 0

    asyncio.run(scenario())


def test_cancelled_consumer_deregisters_connection() -> None:
    async def scenario() -> None:
        manager = SSEConnectionManager(ping_interval=60)

        async def consume() -> None:
            async for _ in manager.stream("leaving", _endpoint_for):
                pass

        task = asyncio.create_task(consume())
        while manager.connection_count == 0:
            await asyncio.sleep(0)
        [connection] = manager.list_connections()
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        assert manager.connection_count == 0
        assert connection.is_closed
        assert manager.send_event(connection.connection_id, "message", {}) is False

    asyncio.run(scenario())


def test_broadcast_and_close_all() -> None:
    async def scenario() -> None:
        manager = SSEConnectionManager(ping_interval=60)
        streams = [manager.stream("one", _endpoint_for), manager.stream("two", _endpoint_for)]
        for stream in streams:
            await stream.__anext__()

        assert manager.broadcast("notice", "hello all") == 2
        for stream in streams:
            assert await stream.__anext__() == "event: notice\ndata: hello all\n\n"

        manager.close_all()
        for stream in streams:
            with pytest.raises(StopAsyncIteration):
                await stream.__anext__()
        assert manager.connection_count == 0

    asyncio.run(scenario())


def test_full_queue_drops_events() -> None:
    async def scenario() -> None:
        connection = SSEConnection("conn-1", "client", max_queued_events=1)
        assert connection.send_event("message", "first") is True
        assert connection.send_event("message", "second") is False
        assert await connection.next_frame() == "event: message\ndata: first\n\n"
        connection.close()
        assert connection.describe()["state"] == "closed"

    asyncio.run(scenario())


class _StreamingHarness:
    """Drives a long-lived GET through the ASGI app and parses its SSE body.

    The test client transports buffer whole responses, so the SSE stream is
    read directly from the ASGI ``send`` channel instead.
    """

    def __init__(self, path: str, query_string: bytes = b"") -> None:
        self.scope: Dict[str, Any] = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": path,
            "raw_path": path.encode("ascii"),
            "root_path": "",
            "query_string": query_string,
            "headers": [(b"host", b"testserver"), (b"accept", b"text/event-stream")],
            "client": ("127.0.0.1", 50000),
            "server": ("testserver", 80),
        }
        self.status: Optional[int] = None
        self.headers: Dict[str, str] = {}
        self._request_sent = False
        self._disconnect = asyncio.Event()
        self._events: asyncio.Queue[SSEEvent] = asyncio.Queue()
        self._parser = SSEEventParser()
        self._buffer = ""
        self._task: Optional[asyncio.Task[None]] = None

    def start(self) -> None:
        self._task = asyncio.create_task(app(self.scope, self._receive, self._send))

    async def next_event(self, timeout: float = 2.0) -> SSEEvent:
        return await asyncio.wait_for(self._events.get(), timeout=timeout)

    async def disconnect(self) -> None:
        self._disconnect.set()
        assert self._task is not None
        await asyncio.wait_for(self._task, timeout=5)

    async def _receive(self) -> Dict[str, Any]:
        if not self._request_sent:
            self._request_sent = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await self._disconnect.wait()
        return {"type": "http.disconnect"}

    async def _send(self, message: Dict[str, Any]) -> None:
        if message["type"] == "http.response.start":
            self.status = message["status"]
            self.headers = {key.decode(): value.decode() for key, value in message.get("headers", [])}
            return
        if message["type"] != "http.response.body":
            return
        self._buffer += message.get("body", b"").decode("utf-8")
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            event = self._parser.feed_line(line)
            if event is not None:
                self._events.put_nowait(event)


def test_sse_round_trip_over_http() -> None:
    async def scenario() -> None:
        harness = _StreamingHarness("/mcp/sse", b"clientId=tester")
        harness.start()

        endpoint_event = await harness.next_event()
        assert harness.status == 200
        assert harness.headers["content-type"].startswith("text/event-stream")
        assert harness.headers["cache-control"] == "no-cache"
        assert endpoint_event.event == "endpoint"
        endpoint = endpoint_event.data
        assert endpoint.startswith("/mcp/sse/")

        manager = get_connection_manager()
        connection = manager.get(endpoint.rsplit("/", 1)[1])
        assert connection is not None
        assert connection.client_id == "tester"

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            notified = await client.post(endpoint, json={"jsonrpc": "2.0", "method": "notifications/initialized"})
            assert notified.status_code == 200
            assert notified.content == b""

            posted = await client.post(endpoint, json={"jsonrpc": "2.0", "id": 1, "method": "ping"})
            assert posted.status_code == 200
            assert posted.content == b""
            assert posted.headers["access-control-allow-origin"] == "*"

            # The notification queued nothing, so the ping response comes next.
            message = await harness.next_event()
            assert message.event == "message"
            assert json.loads(message.data) == {"jsonrpc": "2.0", "id": 1, "result": {}}

            broken = await client.post(endpoint, content=b"", headers={"Content-Type": "application/json"})
            assert broken.status_code == 200
            error = json.loads((await harness.next_event()).data)
            assert error == {
                "jsonrpc": "2.0",
                "id": "unknown",
                "error": {"code": -32700, "message": "Parse error: Empty request body"},
            }

            await harness.disconnect()
            assert manager.connection_count == 0

            after_close = await client.post(endpoint, json={"jsonrpc": "2.0", "id": 2, "method": "ping"})
            assert after_close.status_code == 404
            assert after_close.json() == {"error": "SSE connection not found"}

    asyncio.run(scenario())


def test_responses_are_correlated_by_id_over_http() -> None:
    async def scenario() -> List[Dict[str, Any]]:
        harness = _StreamingHarness("/mcp/sse")
        harness.start()
        endpoint = (await harness.next_event()).data

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            await asyncio.gather(
                *(
                    client.post(endpoint, json={"jsonrpc": "2.0", "id": request_id, "method": "ping"})
                    for request_id in ("a", "b", "c")
                )
            )
            messages = [json.loads((await harness.next_event()).data) for _ in range(3)]
        await harness.disconnect()
        return messages

    messages = asyncio.run(scenario())
    assert sorted(message["id"] for message in messages) == ["a", "b", "c"]
    assert all(message["result"] == {} for message in messages)


def test_post_to_connection_closed_before_relay_is_not_found() -> None:
    async def scenario() -> None:
        manager = get_connection_manager()
        stream = manager.stream("closing", _endpoint_for)
        await stream.__anext__()
        [connection] = manager.list_connections()
        # Closed, but the stream has not yet run its teardown.
        connection.close()
        assert manager.get(connection.connection_id) is connection

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.post(
                f"/mcp/sse/{connection.connection_id}",
                json={"jsonrpc": "2.0", "id": 1, "method": "ping"},
            )
        assert response.status_code == 404
        assert response.json() == {"error": "SSE connection not found"}
        await stream.aclose()
        assert manager.connection_count == 0

    asyncio.run(scenario())


def test_full_outbound_queue_drops_relay_but_acknowledges_post() -> None:
    async def scenario() -> None:
        manager = SSEConnectionManager(ping_interval=60, max_queued_events=1)

        async def small_queue_manager() -> SSEConnectionManager:
            return manager

        app.dependency_overrides[connection_manager_dependency] = small_queue_manager
        try:
            stream = manager.stream("slow-reader", _endpoint_for)
            endpoint = (await stream.__anext__()).split("data: ", 1)[1].strip()

            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
                first = await client.post(endpoint, json={"jsonrpc": "2.0", "id": 1, "method": "ping"})
                second = await client.post(endpoint, json={"jsonrpc": "2.0", "id": 2, "method": "ping"})
            assert first.status_code == 200
            assert second.status_code == 200
            assert second.content == b""

            assert await stream.__anext__() == 'event: message\ndata: {"jsonrpc":"2.0","id":1,"result":{}}\n\n'
            manager.close_all()
            with pytest.raises(StopAsyncIteration):
                await stream.__anext__()
        finally:
            app.dependency_overrides.pop(connection_manager_dependency, None)

    asyncio.run(scenario())
