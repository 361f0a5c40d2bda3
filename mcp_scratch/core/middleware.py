from __future__ import annotations

from typing import Dict

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

MCP_PATH_PREFIX = "/mcp"

MCP_CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


def is_mcp_path(path: str) -> bool:
    return path == MCP_PATH_PREFIX or path.startswith(MCP_PATH_PREFIX + "/")


class MCPCorsMiddleware:
    """Stamp the MCP CORS headers on every ``/mcp*`` response, error pages included.

    Pure ASGI so streaming bodies and client disconnects pass through untouched.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not is_mcp_path(scope["path"]):
            await self.app(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in MCP_CORS_HEADERS.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_cors)
