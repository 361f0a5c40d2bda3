"""JSON-RPC 2.0 envelopes shared by the direct and SSE transports."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Union

from pydantic import (
    BaseModel,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    model_validator,
)

JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603

# Echoed as the response id when the request id could not be read.
UNKNOWN_ID = "unknown"

RequestId = Union[StrictInt, StrictFloat, StrictStr]


class JsonRpcRequest(BaseModel):
    method: Optional[StrictStr] = None
    params: Any = None
    id: Optional[RequestId] = None

    @property
    def is_notification(self) -> bool:
        return self.id is None

    @property
    def method_key(self) -> str:
        return (self.method or "").strip().lower()

    def params_dict(self) -> Dict[str, Any]:
        """Return params as a mapping, or an empty one when absent or not an object."""
        if isinstance(self.params, dict):
            return self.params
        return {}


class JsonRpcErrorObject(BaseModel):
    code: int
    message: str


class JsonRpcResponse(BaseModel):
    id: Any = None
    result: Any = None
    error: Optional[JsonRpcErrorObject] = None

    @model_validator(mode="after")
    def _result_xor_error(self) -> "JsonRpcResponse":
        if self.error is not None and self.result is not None:
            raise ValueError("A JSON-RPC response carries either a result or an error, not both")
        return self

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.model_dump()
        else:
            payload["result"] = self.result
        return payload


class MessageParseError(ValueError):
    """Raised when a request body cannot be turned into a JSON-RPC request."""

    code = PARSE_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_response(self) -> JsonRpcResponse:
        return build_error(UNKNOWN_ID, self.code, self.message)


def build_result(request_id: Any, result: Any) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, result=result)


def build_error(request_id: Any, code: int, message: str) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, error=JsonRpcErrorObject(code=code, message=message))


def _describe_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "body"
    return f"{location}: {first.get('msg', 'invalid value')}"


def parse_message(body: Union[bytes, str]) -> JsonRpcRequest:
    if isinstance(body, str):
        body = body.encode("utf-8")
    if not body or not body.strip():
        raise MessageParseError("Parse error: Empty request body")
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise MessageParseError(f"Parse error: Invalid JSON - {exc}") from exc
    try:
        return JsonRpcRequest.model_validate(payload)
    except ValidationError as exc:
        raise MessageParseError(
            f"Parse error: Invalid JSON - {_describe_validation_error(exc)}"
        ) from exc
