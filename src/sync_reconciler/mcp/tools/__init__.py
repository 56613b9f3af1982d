"""MCP tool handlers for the reconciliation engine.

This package contains MCP tool implementations that wrap the synchronous
``ReconciliationEngine`` with async handlers, text reports, and structured
error responses.
"""

from .errors import build_error_response, translate_reconcile_error
from .registry import ToolRegistry, ToolSpec
from .sync import SYNC_SPECS, SYNC_TOOLS

ALL_SPECS: list[ToolSpec] = list(SYNC_SPECS)

__all__ = [
    "build_error_response",
    "translate_reconcile_error",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    # Spec lists
    "ALL_SPECS",
    "SYNC_SPECS",
    "SYNC_TOOLS",
]
