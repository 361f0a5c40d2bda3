from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Sequence

import httpx
import uvicorn

from .core.config import ConfigLoaderError
from .core.dependencies import get_config_service, get_connection_manager
from .services.client import MCPClientError, MCPHttpClient, MCPSSEClient

logger = logging.getLogger("mcp_scratch.cli")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class GracefulServer(uvicorn.Server):
    """uvicorn server that closes open SSE streams as soon as shutdown starts.

    uvicorn waits for in-flight responses before running the lifespan
    shutdown, and an SSE stream never finishes on its own.
    """

    def __init__(self, config: uvicorn.Config) -> None:
        super().__init__(config)
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def serve(self, sockets=None) -> None:
        self._loop = asyncio.get_running_loop()
        await super().serve(sockets=sockets)

    def handle_exit(self, sig, frame) -> None:
        if self._loop is not None and not self.should_exit:
            self._loop.call_soon_threadsafe(get_connection_manager().close_all)
        super().handle_exit(sig, frame)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MCP server from scratch (Direct POST and SSE transports).")
    subcommands = parser.add_subparsers(dest="command", required=True)

    serve = subcommands.add_parser("serve", help="Run the HTTP server.")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: %(default)s)")
    serve.add_argument("--port", type=int, default=3000, help="Bind port (default: %(default)s)")

    probe = subcommands.add_parser("probe", help="Run a short request sequence against a running server.")
    probe.add_argument(
        "--base-url",
        default="http://127.0.0.1:3000",
        help="Server base URL (default: %(default)s)",
    )
    probe.add_argument(
        "--transport",
        choices=["direct", "sse"],
        default="direct",
        help="Transport to exercise (default: %(default)s)",
    )
    probe.add_argument(
        "--message",
        default="Hello from the probe",
        help="Text sent to EchoTool (default: %(default)s)",
    )
    probe.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="Per-request timeout in seconds (default: %(default)s)",
    )
    return parser


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


def serve(host: str, port: int) -> int:
    try:
        server_config = get_config_service().get_server_config()
    except ConfigLoaderError as exc:
        _configure_logging("INFO")
        logger.critical("Invalid configuration: %s", exc)
        return 1

    _configure_logging(server_config.log_level)
    logger.info("Starting %s on http://%s:%d", server_config.name, host, port)
    config = uvicorn.Config(
        "mcp_scratch.main:app",
        host=host,
        port=port,
        log_level=server_config.log_level.lower(),
    )
    GracefulServer(config).run()
    return 0


async def _probe_sequence(client: Any, message: str) -> List[Dict[str, Any]]:
    results: List[Dict[str, Any]] = []
    init_result = await client.initialize()
    results.append({"method": "initialize", "result": init_result})
    results.append({"method": "tools/list", "response": await client.request("tools/list")})
    results.append(
        {
            "method": "tools/call",
            "response": await client.request(
                "tools/call",
                {"name": "EchoTool", "arguments": {"message": message}},
            ),
        }
    )
    results.append({"method": "ping", "response": await client.request("ping")})
    return results


async def probe(base_url: str, transport: str, message: str, timeout: float) -> List[Dict[str, Any]]:
    if transport == "sse":
        async with MCPSSEClient(base_url=base_url, request_timeout=timeout) as client:
            logger.info("Connected over SSE; posting to %s", client.endpoint)
            return await _probe_sequence(client, message)
    async with MCPHttpClient(base_url=base_url, request_timeout=timeout) as client:
        return await _probe_sequence(client, message)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    if args.command == "serve":
        return serve(args.host, args.port)

    _configure_logging("INFO")
    try:
        results = asyncio.run(probe(args.base_url, args.transport, args.message, args.timeout))
    except (MCPClientError, TimeoutError, httpx.HTTPError) as exc:
        logger.error("Probe failed: %s", exc)
        return 1
    json.dump(results, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
