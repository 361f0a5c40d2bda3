from __future__ import annotations

import datetime as dt
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from .api import events as events_router, mcp as mcp_router
from .core.dependencies import (
    connection_manager_dependency,
    get_catalog,
    get_config_service,
    get_connection_manager,
    get_dispatcher,
    get_legacy_event_processor,
)
from .core.middleware import MCPCorsMiddleware
from .services.sse import SSEConnectionManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan_context(app: FastAPI):
    logger.info("Starting up MCP server; loading configuration")
    config_service = get_config_service()
    server = config_service.load().server
    # Build the catalog and transports once, before the first request.
    get_catalog()
    get_dispatcher()
    get_legacy_event_processor()
    manager = get_connection_manager()
    logger.info(
        "%s %s ready (protocol %s, ping every %ss)",
        server.name,
        server.version,
        server.protocol_version,
        server.ping_interval_seconds,
    )
    try:
        yield
    finally:
        manager.close_all()
        logger.info("MCP server shut down")


app = FastAPI(
    title="MCP Server From Scratch",
    version="1.0.0",
    lifespan=lifespan_context,
)

app.add_middleware(MCPCorsMiddleware)

app.include_router(mcp_router.router)
app.include_router(events_router.router)


@app.get("/health")
async def health(manager: SSEConnectionManager = Depends(connection_manager_dependency)):
    return {
        "status": "healthy",
        "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
        "connections": manager.connection_count,
    }
