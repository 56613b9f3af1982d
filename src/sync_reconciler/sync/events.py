"""Translate object change events into single-object reconciliations.

An emitter (a webhook handler, a message consumer, ...) hands an
``ObjectEvent`` to ``EventTriggerAdapter.handle()``.  The adapter looks up
every synchronization whose source is the event's register/schema and
calls ``reconcile_one`` for each of them, synchronously.  Creates and
updates are forced; deletes go through the deletion path.

Failures are logged per synchronization and never reach the emitter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sync_reconciler.sync.models import MutationType, SynchronizationContractLog

if TYPE_CHECKING:
    from sync_reconciler.sync.engine import ReconciliationEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObjectEvent:
    """A change to one source object.

    Attributes:
        mutation_type: ``create``, ``update`` or ``delete``.
        register_id: Register the object belongs to.
        schema_id: Schema the object belongs to.
        payload: The object after the change (before it, for deletes).
    """

    mutation_type: MutationType
    register_id: str | None
    schema_id: str | None
    payload: Any


class EventTriggerAdapter:
    def __init__(self, engine: ReconciliationEngine) -> None:
        self.engine = engine

    def handle(self, event: ObjectEvent) -> list[SynchronizationContractLog]:
        """Reconcile *event* for every interested synchronization.

        Returns the contract logs of the reconciliations that ran.
        """
        if event.payload is None or event.register_id is None or event.schema_id is None:
            logger.debug("Ignoring event without object, register or schema")
            return []

        synchronizations = self.engine.find_synchronizations_by_source(
            event.register_id, event.schema_id
        )
        results: list[SynchronizationContractLog] = []
        for sync in synchronizations:
            try:
                results.append(
                    self.engine.reconcile_one(
                        sync.id,
                        event.payload,
                        mutation_type=event.mutation_type,
                        force=event.mutation_type != MutationType.DELETE,
                    )
                )
            except Exception:
                logger.exception(
                    "Failed to process %s event for synchronization %s",
                    event.mutation_type.value,
                    sync.id,
                )
        return results
