from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from ..core.config import ServerConfig
from ..schemas.jsonrpc import (
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    JsonRpcRequest,
    JsonRpcResponse,
    build_error,
    build_result,
)
from .catalog import DEFAULT_PROMPT_LIMIT, DEFAULT_RESOURCE_LIMIT, ContentCatalog
from .tools import tool_error

NEXT_PAGE_CURSOR = "next_page_cursor"
INITIALIZED_NOTIFICATIONS = frozenset({"initialized", "notifications/initialized"})

logger = logging.getLogger(__name__)

Handler = Callable[[JsonRpcRequest], Any]


def _get_str(params: Dict[str, Any], key: str) -> Optional[str]:
    value = params.get(key)
    return value if isinstance(value, str) else None


def _get_limit(params: Dict[str, Any], default: int) -> int:
    value = params.get("limit")
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"limit must be an integer, got {value!r}")
    return value


def _page(key: str, items: List[Dict[str, Any]], limit: int) -> Dict[str, Any]:
    result: Dict[str, Any] = {key: items}
    # The cursor key is omitted entirely when the page is short.
    if len(items) >= limit:
        result["nextCursor"] = NEXT_PAGE_CURSOR
    return result


class MethodDispatcher:
    """Routes parsed JSON-RPC requests to MCP handlers backed by the content catalog."""

    def __init__(self, *, catalog: ContentCatalog, server: ServerConfig) -> None:
        self._catalog = catalog
        self._server = server
        self._handlers: Dict[str, Handler] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
            "prompts/list": self._prompts_list,
            "prompts/get": self._prompts_get,
            "resources/list": self._resources_list,
            "resources/read": self._resources_read,
            "resources/templates/list": self._resource_templates_list,
            "completion/complete": self._completion_complete,
        }

    def dispatch(self, request: JsonRpcRequest) -> Optional[JsonRpcResponse]:
        """Return the response for ``request``, or ``None`` when none must be sent.

        Never raises: handler failures become ``-32603`` error responses.
        """
        method = request.method_key
        logger.info("Processing MCP method: %s (id=%r)", request.method, request.id)

        if method in INITIALIZED_NOTIFICATIONS:
            logger.info("Received initialized notification; MCP session established")
            return None

        handler = self._handlers.get(method)
        if handler is None:
            logger.warning("Method not found: %s", request.method)
            response = build_error(request.id, METHOD_NOT_FOUND, f"Method not found: {request.method or ''}")
        else:
            try:
                response = build_result(request.id, handler(request))
            except Exception as exc:
                logger.exception("Error processing MCP method %s", request.method)
                response = build_error(request.id, INTERNAL_ERROR, f"Internal error: {exc}")

        if request.is_notification:
            logger.debug("Dropping response for notification %s", request.method)
            return None
        return response

    def _initialize(self, request: JsonRpcRequest) -> Dict[str, Any]:
        client_info = request.params_dict().get("clientInfo")
        logger.info("Initialize requested by client %s", client_info or "<unknown>")
        return {
            "protocolVersion": self._server.protocol_version,
            "capabilities": {
                "tools": {"listChanged": False},
                "prompts": {"listChanged": False},
                "resources": {"subscribe": False, "listChanged": False},
            },
            "serverInfo": self._server.server_info,
        }

    def _ping(self, request: JsonRpcRequest) -> Dict[str, Any]:
        return {}

    def _tools_list(self, request: JsonRpcRequest) -> Dict[str, Any]:
        return {"tools": self._catalog.list_tools()}

    def _tools_call(self, request: JsonRpcRequest) -> Dict[str, Any]:
        if request.params is None:
            return tool_error("No tool parameters provided")
        params = request.params_dict()
        name = _get_str(params, "name")
        if not name or not name.strip():
            return tool_error("Tool name not specified")
        logger.info("Calling tool %s", name)
        return self._catalog.call_tool(name.strip(), params.get("arguments"))

    def _prompts_list(self, request: JsonRpcRequest) -> Dict[str, Any]:
        params = request.params_dict()
        limit = _get_limit(params, DEFAULT_PROMPT_LIMIT)
        items = self._catalog.list_prompts(tag=_get_str(params, "tag"), limit=limit)
        return _page("prompts", items, limit)

    def _prompts_get(self, request: JsonRpcRequest) -> Dict[str, Any]:
        params = request.params_dict()
        prompt = self._catalog.get_prompt(
            prompt_id=_get_str(params, "id"),
            name=_get_str(params, "name"),
        )
        return self._catalog.describe_prompt(prompt)

    def _resources_list(self, request: JsonRpcRequest) -> Dict[str, Any]:
        params = request.params_dict()
        limit = _get_limit(params, DEFAULT_RESOURCE_LIMIT)
        items = self._catalog.list_resources(path=_get_str(params, "path"), limit=limit)
        return _page("resources", items, limit)

    def _resources_read(self, request: JsonRpcRequest) -> Dict[str, Any]:
        uri = _get_str(request.params_dict(), "uri") or ""
        return {"contents": [self._catalog.read_resource(uri)]}

    def _resource_templates_list(self, request: JsonRpcRequest) -> Dict[str, Any]:
        params = request.params_dict()
        limit = _get_limit(params, DEFAULT_RESOURCE_LIMIT)
        items = self._catalog.list_resource_templates(path=_get_str(params, "path"), limit=limit)
        return _page("resourceTemplates", items, limit)

    def _completion_complete(self, request: JsonRpcRequest) -> Dict[str, Any]:
        return {"completion": {"values": [], "total": 0, "hasMore": False}}
