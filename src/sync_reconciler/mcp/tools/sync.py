"""MCP tool handlers for the reconciliation engine.

Defines five tools:

- ``sync_list`` -- list configured synchronizations and their cursors.
- ``sync_reconcile`` -- run a full scan (optionally forced or as a test run).
- ``sync_reconcile_object`` -- reconcile one object from its payload.
- ``sync_status`` -- cursor, contract count and last run of a synchronization.
- ``sync_logs_cleanup`` -- back-fill missing expiry and reap expired logs.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...config_schema import LogRetentionConfig
from ...core.async_utils import run_sync, run_sync_limited
from ...sync.models import MutationType
from ...sync.reporter import (
    format_run_report,
    format_test_run_preview,
    report_to_json,
)
from .constants import MUTATION_TYPES, SYNCHRONIZATION_ID_SCHEMA
from .errors import build_error_response, format_timestamp
from .registry import ToolSpec

if TYPE_CHECKING:
    from ...sync.engine import ReconciliationEngine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_LIST_TOOL = types.Tool(
    name="sync_list",
    description="List configured synchronizations with their source, target and cursor position.",
    annotations=types.ToolAnnotations(
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    ),
    inputSchema={
        "type": "object",
        "properties": {},
        "required": [],
    },
)

SYNC_RECONCILE_TOOL = types.Tool(
    name="sync_reconcile",
    description=(
        "Reconcile every object of a synchronization's source into its "
        "target. Resumes from the saved page cursor. Unchanged objects are "
        "skipped unless force is set; test runs change nothing."
    ),
    annotations=types.ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=True,
        openWorldHint=True,
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "synchronization_id": SYNCHRONIZATION_ID_SCHEMA,
            "force": {
                "type": "boolean",
                "default": False,
                "description": "Process objects even if their hash is unchanged",
            },
            "test": {
                "type": "boolean",
                "default": False,
                "description": "Preview changes without writing targets or contracts",
            },
        },
        "required": ["synchronization_id"],
    },
)

SYNC_RECONCILE_OBJECT_TOOL = types.Tool(
    name="sync_reconcile_object",
    description=(
        "Reconcile a single source object for a synchronization, as a change "
        "event would. Delete removes the object's target and contract."
    ),
    annotations=types.ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=True,
        openWorldHint=True,
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "synchronization_id": SYNCHRONIZATION_ID_SCHEMA,
            "object": {
                "type": "object",
                "description": "Source object payload, including its id",
            },
            "mutation_type": {
                "type": "string",
                "enum": MUTATION_TYPES,
                "default": "update",
                "description": "Kind of change the object went through",
            },
            "force": {
                "type": "boolean",
                "default": False,
                "description": "Process the object even if its hash is unchanged",
            },
        },
        "required": ["synchronization_id", "object"],
    },
)

SYNC_STATUS_TOOL = types.Tool(
    name="sync_status",
    description=(
        "Show the state of a synchronization -- cursor page, tracked contracts, failed deletes and the last run."
    ),
    annotations=types.ToolAnnotations(
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "synchronization_id": SYNCHRONIZATION_ID_SCHEMA,
        },
        "required": ["synchronization_id"],
    },
)

SYNC_LOGS_CLEANUP_TOOL = types.Tool(
    name="sync_logs_cleanup",
    description="Remove expired run and contract logs and report the remaining log size.",
    annotations=types.ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=True,
        openWorldHint=False,
    ),
    inputSchema={
        "type": "object",
        "properties": {},
        "required": [],
    },
)


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


def _require_id(args: dict[str, Any]) -> str:
    synchronization_id = args.get("synchronization_id")
    if not synchronization_id:
        raise ValueError("synchronization_id is required")
    return str(synchronization_id)


async def _handle_sync_list(
    engine: ReconciliationEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_list`` tool."""
    synchronizations = engine.synchronizations.all()
    if not synchronizations:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text", text="No synchronizations configured."
                )
            ],
            structuredContent={"synchronizations": []},
        )

    lines = [f"Synchronizations ({len(synchronizations)}):"]
    items = []
    for sync in synchronizations:
        lines.append(
            f"- {sync.id}: {sync.source.id} -> {sync.target.id} "
            f"(page {sync.current_page}, last synced "
            f"{format_timestamp(sync.source_last_synced)})"
        )
        items.append(
            {
                "id": sync.id,
                "name": sync.name,
                "source": sync.source.id,
                "target": sync.target.id,
                "current_page": sync.current_page,
            }
        )

    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent={"synchronizations": items},
    )


async def _handle_sync_reconcile(
    engine: ReconciliationEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_reconcile`` tool."""
    synchronization_id = _require_id(args)
    force = bool(args.get("force", False))
    test = bool(args.get("test", False))

    log = await run_sync_limited(
        engine.reconcile_all, synchronization_id, force=force, test=test
    )
    entries = await run_sync(
        engine.logs.contract_logs, synchronization_id, log.id
    )

    if test:
        text = format_test_run_preview(log, entries)
    else:
        text = format_run_report(log, entries)

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=report_to_json(log, entries),
        isError=log.result.error is not None,
    )


async def _handle_sync_reconcile_object(
    engine: ReconciliationEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_reconcile_object`` tool."""
    synchronization_id = _require_id(args)
    payload = args.get("object")
    if not isinstance(payload, dict):
        return build_error_response(
            "validation_error",
            "object must be a JSON object",
            "Provide the source object payload in the 'object' parameter.",
        )
    mutation_type = MutationType(args.get("mutation_type", "update"))

    entry = await run_sync(
        engine.reconcile_one,
        synchronization_id,
        payload,
        mutation_type=mutation_type,
        force=bool(args.get("force", False)),
    )

    action = entry.target_result.value if entry.target_result else "none"
    text = f"Object {entry.origin_id}: {entry.state.value} (target action: {action})"
    if entry.message:
        text += f"\n{entry.message}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=entry.model_dump(mode="json"),
        isError=not entry.success,
    )


async def _handle_sync_status(
    engine: ReconciliationEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_status`` tool."""
    synchronization_id = _require_id(args)
    status = await run_sync(engine.status, synchronization_id)

    last_run = status.get("last_run")
    if last_run:
        result = last_run["result"]
        last_run_text = (
            f"{format_timestamp(last_run['created'])} "
            f"({result['created']} created, {result['updated']} updated, "
            f"{result['deleted']} deleted, {result['failed']} failed)"
        )
    else:
        last_run_text = "never"

    lines = [
        f"Synchronization status for '{synchronization_id}'",
        f"  Current page:   {status['current_page']}",
        f"  Contracts:      {status['contracts']}",
        f"  Failed deletes: {status['delete_failed']}",
        f"  Last synced:    {format_timestamp(status.get('source_last_synced'))}",
        f"  Last run:       {last_run_text}",
    ]

    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent=status,
    )


async def _handle_sync_logs_cleanup(
    engine: ReconciliationEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``sync_logs_cleanup`` tool."""
    retention = engine.retention or LogRetentionConfig()

    def cleanup() -> dict[str, int]:
        backfilled = engine.logs.set_expiry(retention)
        removed = engine.logs.clear_expired()
        return {
            "expiry_backfilled": backfilled,
            "removed": removed,
            "remaining_bytes": engine.logs.total_size(),
        }

    summary = await run_sync(cleanup)
    logger.info("Log cleanup: %s", summary)
    text = (
        f"Removed {summary['removed']} expired log entries "
        f"({summary['expiry_backfilled']} given an expiry). "
        f"Remaining log size: {summary['remaining_bytes']} bytes."
    )
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=summary,
    )


SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(tool=SYNC_LIST_TOOL, handler=_handle_sync_list),
    ToolSpec(tool=SYNC_RECONCILE_TOOL, handler=_handle_sync_reconcile, mutating=True),
    ToolSpec(
        tool=SYNC_RECONCILE_OBJECT_TOOL,
        handler=_handle_sync_reconcile_object,
        mutating=True,
    ),
    ToolSpec(tool=SYNC_STATUS_TOOL, handler=_handle_sync_status),
    ToolSpec(
        tool=SYNC_LOGS_CLEANUP_TOOL,
        handler=_handle_sync_logs_cleanup,
        mutating=True,
    ),
]

SYNC_TOOLS: list[types.Tool] = [spec.tool for spec in SYNC_SPECS]
