"""Scheduler-facing wrapper around ``reconcile_all``.

A job runner calls ``SynchronizationAction.run(argument)`` with the job's
argument dict and gets back a small report::

    {"level": "INFO", "message": "...", "stack_trace": [...], "next_run": None}

``level`` is ``ERROR`` when the job is misconfigured or the run failed,
``WARNING`` when the synchronization is unknown or the source rate limited
us, and ``INFO`` otherwise.  On rate limiting ``next_run`` carries the
reset value the remote reported so the scheduler can postpone the job.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sync_reconciler.sync.errors import (
    RateLimitedError,
    SynchronizationNotFoundError,
)

if TYPE_CHECKING:
    from sync_reconciler.sync.engine import ReconciliationEngine

logger = logging.getLogger(__name__)

LEVEL_INFO = "INFO"
LEVEL_WARNING = "WARNING"
LEVEL_ERROR = "ERROR"


class SynchronizationAction:
    def __init__(self, engine: ReconciliationEngine) -> None:
        self.engine = engine

    def run(self, argument: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run the synchronization named by ``argument["synchronization_id"]``.

        Accepts ``force`` and ``test`` flags in *argument* as well.
        Never raises; every outcome is reported through the returned dict.
        """
        argument = argument or {}
        trace: list[str] = ["Check for a valid synchronization ID"]

        def report(level: str, message: str, next_run: Any = None) -> dict[str, Any]:
            trace.append(message)
            return {
                "level": level,
                "message": message,
                "stack_trace": trace,
                "next_run": next_run,
            }

        synchronization_id = argument.get("synchronization_id")
        if synchronization_id is None:
            return report(LEVEL_ERROR, "No synchronization ID provided")

        trace.append(f"Getting synchronization: {synchronization_id}")
        trace.append("Doing the synchronization")
        try:
            log = self.engine.reconcile_all(
                str(synchronization_id),
                force=bool(argument.get("force", False)),
                test=bool(argument.get("test", False)),
            )
        except SynchronizationNotFoundError:
            return report(
                LEVEL_WARNING, f"Synchronization not found: {synchronization_id}"
            )
        except RateLimitedError as exc:
            return self._rate_limited(report, str(exc), exc.reset)
        except Exception as exc:
            logger.exception("Synchronization %s failed", synchronization_id)
            return report(LEVEL_ERROR, f"Failed to synchronize: {exc}")

        result = log.result
        if result.rate_limit_reset is not None:
            return self._rate_limited(
                report, result.error or "rate limited", result.rate_limit_reset
            )
        if result.error is not None:
            return report(LEVEL_ERROR, f"Failed to synchronize: {result.error}")

        count = len(result.contracts) or result.objects_found
        return report(LEVEL_INFO, f"Synchronized {count} successfully")

    @staticmethod
    def _rate_limited(report, message: str, reset: Any) -> dict[str, Any]:
        response = report(LEVEL_WARNING, f"Stopped synchronization: {message}", reset)
        if reset is not None:
            response["stack_trace"].append(
                f"Returning rate limit reset to update the next run: {reset}"
            )
        return response
