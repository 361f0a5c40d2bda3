from __future__ import annotations

import logging
import time
from typing import Any, Dict

from ..core.config import ServerConfig
from ..schemas.events import EventMessage
from .catalog import ContentCatalog
from .sse import utc_timestamp

SUPPORTED_EVENT_METHODS = ["initialize", "tools/list", "ping", "echo", "status", "time"]

logger = logging.getLogger(__name__)


class LegacyEventProcessor:
    """Handles the plain ``{method, data}`` events accepted by ``/send-event``."""

    def __init__(self, *, catalog: ContentCatalog, server: ServerConfig) -> None:
        self._catalog = catalog
        self._server = server
        self._started = time.monotonic()

    def process(self, event: EventMessage) -> Dict[str, Any]:
        method = (event.method or "").lower()
        logger.info("Processing legacy event: %s", event.method)
        if method == "initialize":
            return {
                "capabilities": {"tools": {"listChanged": False}},
                "serverInfo": self._server.server_info,
            }
        if method == "tools/list":
            return {"tools": self._catalog.list_tools()}
        if method == "ping":
            return {"method": "pong", "message": "Ping received successfully", "originalData": event.data}
        if method == "echo":
            return {"method": "echo", "message": event.data if event.data is not None else "No data provided"}
        if method == "status":
            return {
                "method": "status",
                "message": "System is running",
                "uptime": round(time.monotonic() - self._started, 3),
            }
        if method == "time":
            return {"method": "time", "message": utc_timestamp()}
        return {
            "method": "unknown",
            "message": f"Unknown method: {event.method}",
            "supportedMethods": list(SUPPORTED_EVENT_METHODS),
        }
