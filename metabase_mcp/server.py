#!/usr/bin/env python3
"""
Metabase MCP Server
Exposes Metabase dashboards, questions, collections, users and permissions
as MCP tools for AI agents.

Setup:
  1. pip install metabase-mcp
  2. Set METABASE_URL plus either METABASE_API_KEY or
     METABASE_USERNAME and METABASE_PASSWORD
  3. Add `metabase-mcp` as a stdio server in your MCP client config
"""

import asyncio
import logging
import sys
from typing import Any, Dict, List

from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server

from metabase_mcp import __version__
from metabase_mcp.client import MetabaseClient
from metabase_mcp.config import MetabaseSettings, resolve_credentials
from metabase_mcp.dispatcher import Dispatcher
from metabase_mcp.errors import ConfigurationError
from metabase_mcp.resources import (
    MIME_TYPE,
    RESOURCE_TEMPLATES,
    list_dashboard_resources,
    read_resource_text,
)
from metabase_mcp.tools import registry

logger = logging.getLogger(__name__)

SERVER_NAME = "metabase-mcp"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# ─── Logging & Fault Handlers ────────────────────────────────────────────────


def configure_logging(level: str = "INFO") -> None:
    """Send logs to stderr; stdout carries the MCP stdio stream."""
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr, force=True)


def _log_uncaught(exc_type, exc, tb) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc, tb)
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc, tb))


def _log_unretrieved(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
    # Only logged: the invocation that spawned the task may already have replied.
    logger.error(
        "Unhandled exception in event loop: %s",
        context.get("message", "unknown error"),
        exc_info=context.get("exception"),
    )


# ─── Server Wiring ───────────────────────────────────────────────────────────


def build_server(dispatcher: Dispatcher) -> Server:
    """Bind discovery, invocation and resource requests to ``dispatcher``."""
    server = Server(SERVER_NAME, version=__version__)
    client = dispatcher.client

    async def _authenticate() -> None:
        if client.uses_password:
            await client.ensure_session()

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return dispatcher.list_tools()

    # Registered directly rather than through @server.call_tool(): that
    # decorator turns every exception into an error result, and InvalidParams
    # and AuthenticationError must fail the request itself.
    async def call_tool(req: types.CallToolRequest) -> types.ServerResult:
        result = await dispatcher.call(req.params.name, req.params.arguments)
        return types.ServerResult(result)

    server.request_handlers[types.CallToolRequest] = call_tool

    @server.list_resources()
    async def list_resources() -> List[types.Resource]:
        logger.info("Listing resources...")
        await _authenticate()
        return await list_dashboard_resources(client)

    @server.list_resource_templates()
    async def list_resource_templates() -> List[types.ResourceTemplate]:
        return list(RESOURCE_TEMPLATES)

    @server.read_resource()
    async def read_resource(uri) -> List[ReadResourceContents]:
        logger.info("Reading resource %s", uri)
        await _authenticate()
        text = await read_resource_text(client, str(uri))
        return [ReadResourceContents(content=text, mime_type=MIME_TYPE)]

    return server


async def serve(settings: MetabaseSettings) -> None:
    credentials = resolve_credentials(settings)
    async with MetabaseClient(settings.url, credentials, timeout=settings.timeout) as client:
        server = build_server(Dispatcher(client, registry))
        asyncio.get_running_loop().set_exception_handler(_log_unretrieved)

        logger.info("Starting Metabase MCP server...")
        async with stdio_server() as (read_stream, write_stream):
            logger.info("Metabase MCP server running on stdio")
            await server.run(read_stream, write_stream, server.create_initialization_options())


# ─── Entry Point ─────────────────────────────────────────────────────────────


def main() -> None:
    configure_logging()
    sys.excepthook = _log_uncaught

    try:
        settings = MetabaseSettings.from_env()
        resolve_credentials(settings)
    except ConfigurationError as e:
        logger.critical("%s", e)
        sys.exit(1)

    logging.getLogger().setLevel(settings.log_level)
    try:
        asyncio.run(serve(settings))
    except KeyboardInterrupt:
        logger.info("Shutting down server...")


if __name__ == "__main__":
    main()
