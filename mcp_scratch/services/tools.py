from __future__ import annotations

import logging
from typing import Any, Callable, Dict

from ..core.config import ToolDefinition

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], str]


def text_result(text: str, *, is_error: bool = False) -> Dict[str, Any]:
    return {
        "content": [{"type": "text", "text": text}],
        "isError": is_error,
    }


def tool_error(message: str) -> Dict[str, Any]:
    """Tool failures are reported as tool output, never as JSON-RPC errors."""
    return text_result(f"Error: {message}", is_error=True)


def _hello(arguments: Dict[str, Any]) -> str:
    return "Hello! I'm a tool from the MCP server. Nice to meet you!"


def _greet_user(arguments: Dict[str, Any]) -> str:
    name = str(arguments["name"]).strip()
    title = arguments.get("title")
    if isinstance(title, str) and title.strip():
        return f"Hello, {title.strip()} {name}! Welcome to our MCP server!"
    return f"Hello, {name}! Welcome to our MCP server!"


def _echo(arguments: Dict[str, Any]) -> str:
    return f"Echo: {arguments['message']}"


TOOL_HANDLERS: Dict[str, ToolHandler] = {
    "hellotool": _hello,
    "greetuser": _greet_user,
    "echotool": _echo,
}


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def run_tool(tool: ToolDefinition, arguments: Any) -> Dict[str, Any]:
    required = tool.required_arguments
    if arguments is None:
        if required:
            return tool_error(f"No arguments provided for {tool.name}")
        arguments = {}
    if not isinstance(arguments, dict):
        return tool_error(f"Arguments for {tool.name} must be an object")

    for param in required:
        if _is_missing(arguments.get(param)):
            return tool_error(f"'{param}' parameter is required for {tool.name}")

    handler = TOOL_HANDLERS.get(tool.name.lower())
    if handler is None:
        return tool_error(f"Tool '{tool.name}' has no implementation")

    try:
        output = handler(arguments)
    except Exception as exc:
        logger.exception("Tool %s failed", tool.name)
        return tool_error(f"executing tool {tool.name} failed: {exc}")
    logger.debug("Tool %s produced %d characters", tool.name, len(output))
    return text_result(output)
