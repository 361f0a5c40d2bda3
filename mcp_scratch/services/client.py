from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

_JSONRPC_VERSION = "2.0"
_DEFAULT_PROTOCOL_VERSION = "2024-11-05"
_CLIENT_INFO = {"name": "mcp-scratch-client", "version": "1.0.0"}


logger = logging.getLogger(__name__)


class MCPClientError(RuntimeError):
    pass


@dataclass
class SSEEvent:
    event: str
    data: str


class SSEEventParser:
    """Incremental parser for ``text/event-stream`` lines."""

    def __init__(self) -> None:
        self._event: Optional[str] = None
        self._data_lines: list[str] = []

    def feed_line(self, line: str) -> Optional[SSEEvent]:
        stripped = line.rstrip("\r\n")
        if not stripped:
            if self._event is None and not self._data_lines:
                return None
            event = SSEEvent(event=self._event or "message", data="\n".join(self._data_lines))
            self._event = None
            self._data_lines = []
            return event
        if stripped.startswith(":"):
            return None
        field, _, value = stripped.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value
        elif field == "data":
            self._data_lines.append(value)
        # Other SSE fields (id, retry) are not used by this transport.
        return None


def parse_endpoint(data: str) -> str:
    """Accept the bare path string, or a JSON object with a ``uri`` property."""
    try:
        decoded = json.loads(data)
    except json.JSONDecodeError:
        return data.strip()
    if isinstance(decoded, str):
        return decoded
    if isinstance(decoded, dict) and isinstance(decoded.get("uri"), str):
        return decoded["uri"]
    return data.strip()


def _initialize_params(protocol_version: str) -> Dict[str, Any]:
    return {
        "protocolVersion": protocol_version,
        "capabilities": {"roots": {"listChanged": True}, "sampling": {}},
        "clientInfo": dict(_CLIENT_INFO),
    }


@dataclass
class MCPHttpClient:
    """Client for the direct transport: one POST, one JSON-RPC response."""

    base_url: str
    endpoint: str = "/mcp"
    protocol_version: str = _DEFAULT_PROTOCOL_VERSION
    request_timeout: float = 30.0
    transport: Optional[httpx.AsyncBaseTransport] = None

    def __post_init__(self) -> None:
        self._client: httpx.AsyncClient | None = None
        self._next_id = 0

    async def __aenter__(self) -> "MCPHttpClient":
        timeout = httpx.Timeout(self.request_timeout, connect=10.0)
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=self.transport)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def initialize(self) -> Dict[str, Any]:
        response = await self.request("initialize", params=_initialize_params(self.protocol_version))
        if "error" in response:
            raise MCPClientError(f"Failed to initialize MCP server at {self.base_url}: {response['error']}")
        await self.notify("notifications/initialized")
        return response.get("result", {})

    async def request(self, method: str, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "jsonrpc": _JSONRPC_VERSION,
            "id": self._next_request_id(),
            "method": method,
        }
        if params is not None:
            payload["params"] = params
        response = await self._post(payload)
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise MCPClientError(f"Invalid JSON response from MCP server: {response.text!r}") from exc

    async def notify(self, method: str, params: Dict[str, Any] | None = None) -> None:
        payload: Dict[str, Any] = {"jsonrpc": _JSONRPC_VERSION, "method": method}
        if params is not None:
            payload["params"] = params
        response = await self._post(payload)
        if response.content:
            logger.debug("Unexpected body for notification %s: %s", method, response.text)

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        if not self._client:
            raise MCPClientError("MCP HTTP client is not open")
        response = await self._client.post(self.endpoint, json=payload)
        if response.status_code >= 400:
            detail = response.text.strip()
            raise MCPClientError(
                f"MCP HTTP request failed (status={response.status_code}, detail={detail or 'no body'})"
            )
        return response

    def _next_request_id(self) -> int:
        self._next_id += 1
        return self._next_id


@dataclass
class MCPSSEClient:
    """Client for the SSE transport.

    Opens the event stream, waits for the ``endpoint`` event, then POSTs
    requests to that endpoint and resolves each one from the ``message`` event
    carrying the same ``id``.
    """

    base_url: str
    sse_path: str = "/mcp/sse"
    client_id: Optional[str] = None
    protocol_version: str = _DEFAULT_PROTOCOL_VERSION
    request_timeout: float = 30.0
    transport: Optional[httpx.AsyncBaseTransport] = None

    def __post_init__(self) -> None:
        self._client: httpx.AsyncClient | None = None
        self._reader: asyncio.Task[None] | None = None
        self._endpoint: Optional[str] = None
        self._endpoint_ready = asyncio.Event()
        self._pending: Dict[Any, asyncio.Future[Dict[str, Any]]] = {}
        self._next_id = 0
        self.last_ping: Optional[str] = None

    @property
    def endpoint(self) -> Optional[str]:
        return self._endpoint

    async def __aenter__(self) -> "MCPSSEClient":
        timeout = httpx.Timeout(self.request_timeout, connect=10.0)
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=self.transport)
        self._reader = asyncio.create_task(self._read_events(), name="mcp-sse-reader")
        try:
            await asyncio.wait_for(self._endpoint_ready.wait(), timeout=self.request_timeout)
        except asyncio.TimeoutError as exc:
            await self.aclose()
            raise MCPClientError("Failed to receive endpoint event from SSE connection") from exc
        if self._endpoint is None:
            await self.aclose()
            raise MCPClientError("SSE stream closed before the endpoint event arrived")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        self._fail_pending(MCPClientError("MCP SSE client closed"))
        if self._client:
            await self._client.aclose()
            self._client = None

    async def initialize(self) -> Dict[str, Any]:
        response = await self.request("initialize", params=_initialize_params(self.protocol_version))
        if "error" in response:
            raise MCPClientError(f"Failed to initialize MCP server at {self.base_url}: {response['error']}")
        await self.notify("notifications/initialized")
        return response.get("result", {})

    async def request(self, method: str, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
        request_id = self._next_request_id()
        future: asyncio.Future[Dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        payload: Dict[str, Any] = {
            "jsonrpc": _JSONRPC_VERSION,
            "id": request_id,
            "method": method,
        }
        if params is not None:
            payload["params"] = params
        try:
            await self._post(payload)
            return await asyncio.wait_for(future, timeout=self.request_timeout)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(f"No response received via SSE for request {request_id} ({method})") from exc
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: Dict[str, Any] | None = None) -> None:
        payload: Dict[str, Any] = {"jsonrpc": _JSONRPC_VERSION, "method": method}
        if params is not None:
            payload["params"] = params
        await self._post(payload)

    async def _post(self, payload: Dict[str, Any]) -> None:
        if not self._client or not self._endpoint:
            raise MCPClientError("MCP SSE client is not connected")
        response = await self._client.post(self._endpoint, json=payload)
        if response.status_code == 404:
            raise MCPClientError(f"SSE connection not found for endpoint {self._endpoint}")
        if response.status_code >= 400:
            detail = response.text.strip()
            raise MCPClientError(
                f"MCP SSE POST failed (status={response.status_code}, detail={detail or 'no body'})"
            )

    async def _read_events(self) -> None:
        assert self._client is not None
        params = {"clientId": self.client_id} if self.client_id else None
        parser = SSEEventParser()
        # The stream stays idle between keep-alives, so no read timeout applies.
        stream_timeout = httpx.Timeout(self.request_timeout, read=None)
        try:
            async with self._client.stream(
                "GET",
                self.sse_path,
                params=params,
                headers={"Accept": "text/event-stream"},
                timeout=stream_timeout,
            ) as response:
                if response.status_code >= 400:
                    raise MCPClientError(f"SSE connection failed (status={response.status_code})")
                async for line in response.aiter_lines():
                    event = parser.feed_line(line)
                    if event is not None:
                        self.handle_event(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("SSE stream from %s ended with error: %s", self.base_url, exc)
            self._fail_pending(exc)
        else:
            self._fail_pending(MCPClientError("SSE stream closed by server"))
        finally:
            # Unblock __aenter__ if the stream ended before the endpoint arrived.
            self._endpoint_ready.set()

    def handle_event(self, event: SSEEvent) -> None:
        if event.event == "endpoint":
            self._endpoint = parse_endpoint(event.data)
            logger.info("Received SSE endpoint: %s", self._endpoint)
            self._endpoint_ready.set()
            return
        if event.event == "ping":
            self.last_ping = event.data
            return
        if event.event != "message":
            logger.debug("Ignoring SSE event '%s'", event.event)
            return
        try:
            message = json.loads(event.data)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON SSE message: %s", event.data)
            return
        if not isinstance(message, dict):
            logger.debug("Ignoring non-object SSE message: %s", event.data)
            return
        future = self._pending.get(message.get("id"))
        if future is None:
            logger.warning("SSE message without a pending request: %s", event.data)
            return
        if not future.done():
            future.set_result(message)

    def _fail_pending(self, exc: BaseException) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)
        self._pending.clear()

    def _next_request_id(self) -> int:
        self._next_id += 1
        return self._next_id
