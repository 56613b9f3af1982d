"""Error response builders and shared utilities for MCP tool handlers.

This module provides structured error responses with corrective actions
to help AI agents recover from errors without human intervention, plus
shared formatting utilities used across tool modules.
"""

from datetime import datetime, timezone
from typing import Any

import mcp.types as types

from ...sync.errors import (
    ContractConflictError,
    LockedError,
    MappingError,
    ObjectNotFoundError,
    RateLimitedError,
    ReconcileError,
    RuleError,
    SynchronizationNotFoundError,
    TransientError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, rate_limited, transient, conflict, validation_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Synchronization 'x' is not configured", "Use sync_list to see configured synchronizations.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


# ---------------------------------------------------------------------------
# Shared formatting utilities
# ---------------------------------------------------------------------------


def format_timestamp(timestamp: Any) -> str:
    """Format timestamp for display.

    Handles datetime objects, ISO 8601 strings and Unix timestamps
    (int/float). Uses timezone-aware UTC conversion.

    Args:
        timestamp: datetime, ISO string, int/float Unix timestamp, or None

    Returns:
        Formatted date string (YYYY-MM-DD HH:MM), or "never" for None
    """
    match timestamp:
        case None:
            return "never"
        case datetime() as dt:
            return dt.strftime("%Y-%m-%d %H:%M")
        case int() | float() as ts:
            dt = datetime.fromtimestamp(ts, tz=timezone.utc)
            return dt.strftime("%Y-%m-%d %H:%M")
        case str() as text:
            try:
                return datetime.fromisoformat(text).strftime("%Y-%m-%d %H:%M")
            except ValueError:
                return text
        case _:
            return str(timestamp)


# ---------------------------------------------------------------------------
# Engine error translation
# ---------------------------------------------------------------------------


def translate_reconcile_error(
    error: ReconcileError,
    synchronization_id: str | None = None,
) -> types.CallToolResult:
    """Translate an engine error to a structured error response.

    Args:
        error: Error raised by the engine
        synchronization_id: Synchronization the call was about, for
            contextual suggestions

    Returns:
        CallToolResult with isError=True and corrective action
    """
    message = str(error)

    match error:
        case SynchronizationNotFoundError():
            return build_error_response(
                "not_found",
                message,
                "Use sync_list to see configured synchronizations.",
            )

        case RateLimitedError(reset=reset):
            action = "Wait for the source rate limit to reset, then retry."
            if reset is not None:
                action = f"Retry after the rate limit resets ({reset})."
            return build_error_response("rate_limited", message, action)

        case TransientError():
            return build_error_response(
                "transient",
                message,
                "The source or target is unreachable. Retry later.",
            )

        case ObjectNotFoundError():
            return build_error_response(
                "not_found",
                message,
                "Check that the object still exists in the source.",
            )

        case ContractConflictError() | LockedError():
            action = "Another reconciliation is handling this object. Retry shortly."
            if synchronization_id:
                action += f" Use sync_status(synchronization_id='{synchronization_id}') to check progress."
            return build_error_response("conflict", message, action)

        case MappingError() | RuleError():
            return build_error_response(
                "validation_error",
                message,
                "Check the mapping and rule configuration of the synchronization.",
            )

        case _:
            return build_error_response(
                "server_error",
                message,
                "Check the synchronization configuration and provider connectivity.",
            )
