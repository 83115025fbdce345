"""FastMCP application factory.

Builds the FastMCP server with the lifecycle middleware installed and the
runtime's periodic tasks tied to the server lifespan.
"""

from __future__ import annotations

__all__ = ["create_server"]

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastmcp import FastMCP

from mcp_relay.runtime import RelayRuntime


def create_server(runtime: RelayRuntime) -> FastMCP:
    """Create the FastMCP app for one runtime.

    Args:
        runtime: Components the server tracks requests and ships logs with.

    Returns:
        FastMCP app; runtime.start() runs on lifespan entry, shutdown() on exit.
    """

    @asynccontextmanager
    async def relay_lifespan(app: FastMCP) -> AsyncIterator[None]:
        # app parameter required by FastMCP's lifespan signature
        await runtime.start()
        try:
            yield
        finally:
            await runtime.shutdown()

    server: FastMCP = FastMCP(name=runtime.config.server_name, lifespan=relay_lifespan)
    server.add_middleware(runtime.create_middleware())

    @server.tool(name="relay_status", description="Report request tracking and log shipping status")
    def relay_status() -> dict[str, Any]:
        return runtime.get_status()

    return server
