"""MCP Server for the reconciliation engine using stdio transport.

This module implements the Model Context Protocol server that lets AI
agents run, inspect and maintain configured synchronizations.

Transport: stdio (for Claude Desktop/Code integration)
Protocol: JSON-RPC 2.0 over MCP
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..logger import setup_logging
from ..sync.engine import ReconciliationEngine
from .lifespan import server_lifespan
from .tools import ALL_SPECS, ToolRegistry, build_error_response

logger = logging.getLogger(__name__)

# Initialize server instance
server = Server("sync-reconciler")

# Global engine instance (initialized in main)
_engine: ReconciliationEngine | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_engine() -> ReconciliationEngine:
    """Get the global ReconciliationEngine instance.

    Raises:
        RuntimeError: If engine is not initialized
    """
    if _engine is None:
        raise RuntimeError(
            "ReconciliationEngine not initialized. Server lifespan not started."
        )
    return _engine


def set_engine(engine: ReconciliationEngine | None) -> None:
    """Set the global ReconciliationEngine instance, or None to clear."""
    global _engine
    _engine = engine


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    """Set the global ToolRegistry instance, or None to clear."""
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available tools from the ToolRegistry."""
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    engine = get_engine()
    try:
        return await get_registry().call_tool(name, arguments, engine)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Sets up logging for MCP mode (file only, never stdout), builds the
    engine via the lifespan manager, and starts the server with stdio
    transport for JSON-RPC communication.

    Args:
        config_overrides: Optional dict with config values to override
            (state_dir, max_workers, execution_time, debug, log_file, read_only)
    """
    overrides = config_overrides or {}

    # Must run BEFORE stdio_server so nothing reaches stdout during
    # protocol negotiation
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
    )

    read_only = overrides.get("read_only", False)
    registry = ToolRegistry(ALL_SPECS, read_only=read_only)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(ALL_SPECS),
    )
    if read_only:
        print(
            f"Read-only mode: {registry.tool_count()} of {len(ALL_SPECS)} tools enabled",
            file=sys.stderr,
        )

    set_registry(registry)

    # set_engine() is called here rather than inside the lifespan so that
    # running this file as __main__ still updates this module's global.
    async with server_lifespan(config_overrides=config_overrides) as ctx:
        set_engine(ctx["engine"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="sync-reconciler",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_engine(None)
            set_registry(None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Sync Reconciler - MCP server for reconciling source objects into targets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .sync_reconciler/config.yml)
  sync-reconciler

  # Keep contracts and logs somewhere else
  sync-reconciler --state-dir /var/lib/sync-reconciler

  # Reconcile more objects in parallel, stop runs after 10 minutes
  sync-reconciler --max-workers 8 --execution-time 600

  # Only expose tools that do not change anything
  sync-reconciler --read-only

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr. Do not pipe stdin/stdout manually.
        """,
    )
    parser.add_argument(
        "--state-dir",
        help="Directory for contracts, progress and logs (overrides SYNC_STATE_DIR)",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        help="Objects reconciled in parallel per page (overrides SYNC_MAX_WORKERS)",
    )
    parser.add_argument(
        "--execution-time",
        type=float,
        help="Run deadline in seconds (overrides SYNC_EXECUTION_TIME)",
    )
    parser.add_argument(
        "--read-only",
        action="store_true",
        help="Hide tools that write to targets, contracts or logs",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        default="/tmp/sync-reconciler.log",
        help="Log file path (default: /tmp/sync-reconciler.log)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"sync-reconciler version {__version__}",
    )
    return parser


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    args = build_parser().parse_args()

    config_overrides: dict = {}
    if args.state_dir:
        config_overrides["state_dir"] = args.state_dir
    if args.max_workers:
        config_overrides["max_workers"] = args.max_workers
    if args.execution_time:
        config_overrides["execution_time"] = args.execution_time
    if args.read_only:
        config_overrides["read_only"] = True
    if args.debug:
        config_overrides["debug"] = True
    if args.log_file:
        config_overrides["log_file"] = args.log_file

    if config_overrides:
        print(
            f"Config overrides from CLI: {', '.join(config_overrides)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
