"""ToolSpec and ToolRegistry for read-only tool filtering.

This module provides a centralized registry for MCP tools that can hide
every tool which changes state, enabling operators to expose a read-only
view of the engine to AI agents.

Key concepts:
- ToolSpec: Immutable dataclass linking a Tool definition, a mutating flag,
  and an async handler with standardized signature (engine, args) -> CallToolResult.
- ToolRegistry: Filters specs at construction time, then provides
  list_tools() and call_tool() dispatch with error translation.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import mcp.types as types

from ...sync.errors import ReconcileError

if TYPE_CHECKING:
    from ...sync.engine import ReconciliationEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Immutable specification for a single MCP tool.

    Attributes:
        tool: The MCP Tool definition (name, description, inputSchema).
        handler: Async handler with signature (engine, args) -> CallToolResult.
        mutating: Whether the tool writes to targets, contracts or logs.
            Mutating tools are hidden from read-only registries.
    """

    tool: types.Tool
    handler: Callable[[ReconciliationEngine, dict], Awaitable[types.CallToolResult]]
    mutating: bool = False


class ToolRegistry:
    """Registry of ToolSpecs with optional read-only filtering.

    If read_only is False, all specs are included.  Otherwise only specs
    with ``mutating=False`` are.
    """

    def __init__(self, specs: list[ToolSpec], read_only: bool = False):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if read_only and spec.mutating:
                continue
            self._specs[spec.tool.name] = spec

    def list_tools(self) -> list[types.Tool]:
        """Return list of types.Tool for all registered specs."""
        return [spec.tool for spec in self._specs.values()]

    def tool_count(self) -> int:
        """Return number of registered tools."""
        return len(self._specs)

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        engine: ReconciliationEngine,
    ) -> types.CallToolResult:
        """Dispatch tool call to registered handler.

        Provides centralized error handling for engine errors, validation
        errors, and unexpected exceptions, translating them into structured
        CallToolResult responses with corrective actions.

        Args:
            name: Tool name to invoke.
            arguments: Tool arguments (may be None).
            engine: ReconciliationEngine instance.

        Returns:
            CallToolResult from the handler.

        Raises:
            ValueError: If tool name is not registered (unknown or filtered out).
        """
        from .errors import build_error_response, translate_reconcile_error

        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown tool: {name}")
        args = arguments or {}
        try:
            return await spec.handler(engine, args)
        except ReconcileError as e:
            logger.warning("Engine error in %s: %s", name, e)
            return translate_reconcile_error(e, args.get("synchronization_id"))
        except ValueError as e:
            return build_error_response(
                "validation_error",
                str(e),
                "Check parameter values and retry.",
            )
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return build_error_response(
                "server_error",
                str(e),
                "Check the server log or retry later.",
            )
