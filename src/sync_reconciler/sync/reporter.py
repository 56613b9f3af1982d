"""Run report formatting functions.

Provides human-readable and machine-readable output for reconciliation
runs:

- ``format_run_report`` -- full post-run summary.
- ``format_test_run_preview`` -- what a test run would have done, grouped
  by action.
- ``report_to_json`` -- structured dict for MCP tool output.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from .models import ObjectState, TargetAction

if TYPE_CHECKING:
    from .models import SynchronizationContractLog, SynchronizationLog

# Failure messages listed in full before the report summarises the rest.
MAX_LISTED_FAILURES = 20

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_run_report(
    log: SynchronizationLog,
    entries: list[SynchronizationContractLog] | None = None,
) -> str:
    """Format a run log as human-readable text.

    Failed objects are listed with their message when *entries* are given.

    Args:
        log: The run log returned by ``reconcile_all``.
        entries: Contract logs of the same run.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    result = log.result

    header = f"Reconciliation of '{log.synchronization_id}'"
    if log.test:
        header += " (TEST RUN)"
    if log.force:
        header += " (FORCED)"
    lines.append(header)
    lines.append(f"Started: {log.created.isoformat()}")
    lines.append(f"Duration: {log.execution_time_ms} ms")
    lines.append("")

    lines.append(
        f"Processed {result.objects_found} objects on {result.pages} pages: "
        f"{result.succeeded} succeeded, {result.failed} failed"
    )
    lines.append(result.summary())
    lines.append("")

    if result.stopped_reason:
        lines.append(f"Stopped early: {result.stopped_reason}")
    if result.error:
        lines.append(f"Error: {result.error}")
    if result.rate_limit_reset:
        lines.append(f"Rate limit resets at: {result.rate_limit_reset}")
    if result.contracts_truncated:
        lines.append("Contract list truncated to fit the log size limit")

    failures = [e for e in entries or [] if e.state == ObjectState.FAILED]
    if failures:
        lines.append("")
        lines.append("Failures:")
        for entry in failures[:MAX_LISTED_FAILURES]:
            lines.append(f"  {entry.origin_id}: {entry.message}")
        hidden = len(failures) - MAX_LISTED_FAILURES
        if hidden > 0:
            lines.append(f"  ... and {hidden} more")

    return "\n".join(lines).rstrip()


def format_test_run_preview(
    log: SynchronizationLog,
    entries: list[SynchronizationContractLog],
) -> str:
    """Format a test run grouped by the action each object would get.

    Args:
        log: A test run log (``test=True``).
        entries: Contract logs of the same run.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("TEST RUN -- No changes were made")
    lines.append(f"Synchronization: {log.synchronization_id}")
    lines.append("")

    groups: dict[str, list[str]] = defaultdict(list)
    for entry in entries:
        if entry.state == ObjectState.FAILED:
            groups["failed"].append(f"{entry.origin_id}: {entry.message}")
        elif entry.target_result in (
            TargetAction.CREATE,
            TargetAction.UPDATE,
            TargetAction.DELETE,
        ):
            groups[entry.target_result.value].append(str(entry.origin_id))
        else:
            groups["skip"].append(str(entry.origin_id))

    for action in ("create", "update", "delete", "failed"):
        if action not in groups:
            continue
        lines.append(f"[{action.upper()}]")
        for item in groups[action]:
            lines.append(f"  {item}")
        lines.append("")

    skip_count = len(groups.get("skip", []))
    if skip_count > 0:
        lines.append(f"Skipped: {skip_count} objects (unchanged)")
        lines.append("")

    if not any(action != "skip" for action in groups):
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(
    log: SynchronizationLog,
    entries: list[SynchronizationContractLog] | None = None,
) -> dict:
    """Convert a run log to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.  Only failed objects
    are included per object, to keep the payload small.

    Args:
        log: The run log.
        entries: Contract logs of the same run.

    Returns:
        Dict with run info, counts, and failure details.
    """
    result = log.result
    failures = [
        {"origin_id": e.origin_id, "message": e.message}
        for e in entries or []
        if e.state == ObjectState.FAILED
    ]
    return {
        "id": log.id,
        "synchronization_id": log.synchronization_id,
        "test": log.test,
        "force": log.force,
        "started_at": log.created.isoformat(),
        "execution_time_ms": log.execution_time_ms,
        "counts": {
            "found": result.objects_found,
            "pages": result.pages,
            "created": result.created,
            "updated": result.updated,
            "deleted": result.deleted,
            "skipped": result.skipped,
            "failed": result.failed,
        },
        "stopped_reason": result.stopped_reason,
        "error": result.error,
        "rate_limit_reset": result.rate_limit_reset,
        "failures": failures,
    }
