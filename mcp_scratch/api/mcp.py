from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse

from ..core.dependencies import connection_manager_dependency, dispatcher_dependency
from ..schemas.jsonrpc import MessageParseError, parse_message
from ..services.dispatcher import MethodDispatcher
from ..services.sse import SSEConnectionManager

router = APIRouter(prefix="/mcp", tags=["mcp"])

logger = logging.getLogger(__name__)


def _json_response(payload: Dict[str, Any], status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(content=payload, status_code=status_code)


def _empty_response(status_code: int = status.HTTP_200_OK) -> Response:
    return Response(status_code=status_code)


def _connection_not_found(connection_id: str) -> JSONResponse:
    logger.warning("SSE connection not found: %s", connection_id)
    return _json_response({"error": "SSE connection not found"}, status.HTTP_404_NOT_FOUND)


@router.post("", name="mcp_direct_message")
async def post_direct_message(
    request: Request,
    dispatcher: MethodDispatcher = Depends(dispatcher_dependency),
) -> Response:
    body = await request.body()
    logger.debug("Direct MCP request (%d bytes, content-type=%s)", len(body), request.headers.get("content-type"))
    try:
        message = parse_message(body)
    except MessageParseError as exc:
        logger.warning("Rejected MCP request: %s", exc.message)
        return _json_response(exc.to_response().to_payload(), status.HTTP_400_BAD_REQUEST)

    response = dispatcher.dispatch(message)
    if response is None:
        return _empty_response()
    return _json_response(response.to_payload())


@router.options("", name="mcp_direct_preflight")
async def direct_preflight() -> Response:
    return _empty_response()


@router.get("/sse", name="mcp_sse_stream")
async def open_sse_stream(
    request: Request,
    client_id: Optional[str] = Query(None, alias="clientId"),
    manager: SSEConnectionManager = Depends(connection_manager_dependency),
) -> StreamingResponse:
    resolved_client = client_id or str(uuid.uuid4())
    client_host = request.client.host if request.client else "unknown"
    logger.info("SSE connection request from %s (client %s)", client_host, resolved_client)

    def endpoint_for(connection_id: str) -> str:
        # A bare path string; clients POST to the literal event data.
        return request.url_for("mcp_sse_message", connection_id=connection_id).path

    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(
        manager.stream(resolved_client, endpoint_for),
        media_type="text/event-stream",
        headers=headers,
    )


@router.post("/sse/{connection_id}", name="mcp_sse_message")
async def post_sse_message(
    connection_id: str,
    request: Request,
    dispatcher: MethodDispatcher = Depends(dispatcher_dependency),
    manager: SSEConnectionManager = Depends(connection_manager_dependency),
) -> Response:
    connection = manager.get(connection_id)
    if connection is None:
        return _connection_not_found(connection_id)

    body = await request.body()
    try:
        message = parse_message(body)
    except MessageParseError as exc:
        logger.warning("Rejected SSE message for %s: %s", connection_id, exc.message)
        response = exc.to_response()
    else:
        response = dispatcher.dispatch(message)

    if response is None:
        return _empty_response()

    if not connection.send_event("message", response.to_payload()) and connection.is_closed:
        return _connection_not_found(connection_id)
    logger.debug("Relayed response for id=%r over SSE connection %s", response.id, connection_id)
    return _empty_response()


@router.options("/sse/{connection_id}", name="mcp_sse_preflight")
async def sse_preflight(connection_id: str) -> Response:
    return _empty_response()
