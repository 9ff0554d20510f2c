"""MCP server wiring for github-lean-mcp.

Exposes the read-only tool registry over stdio, serializes every tool result
as a single JSON text block and publishes two informational resources.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

try:
    from mcp.server import Server
    from mcp.types import Resource, TextContent, Tool
except ImportError as exc:  # pragma: no cover
    raise ImportError("MCP library not installed. Install with: pip install mcp") from exc

from . import __version__
from .config import AppConfig
from .errors import SafeError, internal_error
from .tools import TOOL_METADATA, dispatch_tool, initialize_runtime_from_env

SERVER_NAME = "github-lean-mcp"
STATUS_URI = "github-lean-mcp://server-status"
CAPABILITIES_URI = "github-lean-mcp://capabilities"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger(__name__)

server = Server(SERVER_NAME)


def _resources() -> list[Resource]:
    return [
        Resource(
            uri=STATUS_URI,
            name="Server Status",
            description="Non-secret server configuration and limits",
        ),
        Resource(
            uri=CAPABILITIES_URI,
            name="Capabilities",
            description="Allow-listed read-only operations and envelope contract",
        ),
    ]


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List all available tools."""
    tools = [
        Tool(name=tool_name, description=metadata["description"], inputSchema=metadata["inputSchema"])
        for tool_name, metadata in TOOL_METADATA.items()
    ]
    logger.debug("Listed %s tools", len(tools))
    return tools


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Execute a tool and return its envelope as JSON TextContent."""
    if not isinstance(arguments, dict):
        arguments = {}

    logger.info("Tool called: %s", name)

    try:
        raw_result = await dispatch_tool(name, arguments)
    except Exception as exc:  # pylint: disable=broad-exception-caught
        logger.error("Tool %s failed: %s", name, type(exc).__name__)
        raw_result = internal_error("Tool execution failed")
    return [TextContent(type="text", text=json.dumps(raw_result, indent=2, default=str))]


@server.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    return _resources()


@server.read_resource()
async def read_resource(uri: Any) -> str:
    """Read resource content."""
    uri_s = uri if isinstance(uri, str) else str(uri)

    if uri_s == CAPABILITIES_URI:
        caps = {
            "server": SERVER_NAME,
            "version": __version__,
            "allow_listed_operations": sorted(TOOL_METADATA.keys()),
            "read_only": True,
            "envelope": {
                "success": ["items|item", "meta.next_cursor", "meta.has_more", "meta.rate"],
                "failure": ["error.code", "error.message", "error.retriable", "meta.rate"],
            },
        }
        return json.dumps(caps, indent=2)

    if uri_s == STATUS_URI:
        status: dict[str, Any] = {
            "server": SERVER_NAME,
            "version": __version__,
            "tools_available": len(TOOL_METADATA),
            "tool_names": sorted(TOOL_METADATA.keys()),
            "configured": False,
        }
        try:
            runtime = initialize_runtime_from_env()
        except SafeError:
            return json.dumps(status, indent=2)

        config = runtime.config
        status["configured"] = True
        status["auth_mode"] = "token" if config.token else "github_app"
        status["api_base_url"] = config.api_base_url
        status["limits"] = {
            "total_timeout_s": config.limits.total_timeout_s,
            "max_attempts": config.limits.max_attempts,
            "log_archive_max_bytes": config.limits.log_archive_max_bytes,
        }
        status["policy"] = {
            "repo_allowlist_enabled": bool(config.policy.allowed_repos),
            "repo_allowlist_count": len(config.policy.allowed_repos),
        }
        status["audit"] = {"file_sink_enabled": config.audit_log_path is not None}
        return json.dumps(status, indent=2)

    return json.dumps(
        {"error": {"code": "HTTP_404", "message": "Unknown resource", "retriable": False}},
        indent=2,
    )


def configure_logging(config: AppConfig) -> None:
    """Apply the configured level to the root logger."""
    logging.getLogger().setLevel(config.log_level)


async def run_server() -> None:
    """Run the server over stdio."""
    # Fail fast on invalid/missing host configuration.
    try:
        runtime = initialize_runtime_from_env()
    except SafeError as exc:
        logger.error("Startup configuration error: %s", exc.message)
        raise

    configure_logging(runtime.config)

    from mcp.server.stdio import stdio_server

    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


async def test_server() -> None:
    """Lightweight self-test to ensure tool/resource listing works."""
    tools = [
        Tool(name=name, description=meta["description"], inputSchema=meta["inputSchema"])
        for name, meta in TOOL_METADATA.items()
    ]
    resources = _resources()
    print(f"{SERVER_NAME} {__version__}: {len(tools)} tools, {len(resources)} resources", file=sys.stderr)
