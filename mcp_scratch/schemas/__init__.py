from .events import EventMessage, EventResponse
from .jsonrpc import (
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    UNKNOWN_ID,
    JsonRpcErrorObject,
    JsonRpcRequest,
    JsonRpcResponse,
    MessageParseError,
    build_error,
    build_result,
    parse_message,
)

__all__ = [
    "EventMessage",
    "EventResponse",
    "INTERNAL_ERROR",
    "METHOD_NOT_FOUND",
    "PARSE_ERROR",
    "UNKNOWN_ID",
    "JsonRpcErrorObject",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "MessageParseError",
    "build_error",
    "build_result",
    "parse_message",
]
