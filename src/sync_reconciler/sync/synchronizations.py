"""Configured synchronizations, mappings and rules, plus persisted progress.

Synchronization definitions come from configuration and are read-only to
the engine, except for the cursor (``current_page``, ``current_scan_started``)
and the watermark fields.  Those are persisted separately in
``synchronizations.json`` under ``state_dir`` and merged back on ``get()``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from sync_reconciler.sync.errors import (
    ReconcileError,
    SynchronizationNotFoundError,
)
from sync_reconciler.sync.models import Mapping, Rule, Synchronization
from sync_reconciler.sync.state import StateFile

logger = logging.getLogger(__name__)

PROGRESS_FILE = "synchronizations.json"


class SynchronizationStore:
    """Lookup of synchronizations with durable progress.

    Args:
        synchronizations: Configured synchronizations.
        mappings: Mappings referenced by synchronizations and rules.
        rules: Rules referenced by synchronizations.
        state_dir: Where progress is persisted; ``None`` keeps it in memory.
    """

    def __init__(
        self,
        synchronizations: Iterable[Synchronization] = (),
        mappings: Iterable[Mapping] = (),
        rules: Iterable[Rule] = (),
        state_dir: Path | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._file = StateFile(Path(state_dir) / PROGRESS_FILE) if state_dir else None
        self._mappings = {mapping.id: mapping for mapping in mappings}
        self._rules = {rule.id: rule for rule in rules}

        progress = self._file.load(default={}) if self._file else {}
        self._synchronizations: dict[str, Synchronization] = {}
        for sync in synchronizations:
            saved = progress.get(sync.id)
            if saved:
                sync = sync.model_validate({**sync.model_dump(), **saved})
            self._synchronizations[sync.id] = sync

    # ------------------------------------------------------------------
    # Synchronizations
    # ------------------------------------------------------------------

    def get(self, synchronization_id: str) -> Synchronization:
        """Return the synchronization with its latest progress.

        Raises:
            SynchronizationNotFoundError: If no such synchronization exists.
        """
        with self._lock:
            sync = self._synchronizations.get(synchronization_id)
        if sync is None:
            raise SynchronizationNotFoundError(
                f"Synchronization '{synchronization_id}' is not configured"
            )
        return sync

    def all(self) -> list[Synchronization]:
        with self._lock:
            return list(self._synchronizations.values())

    def save(self, synchronization: Synchronization) -> Synchronization:
        """Persist the engine-owned fields of *synchronization*."""
        stored = synchronization.model_copy(
            update={"updated": datetime.now(timezone.utc)}
        )
        with self._lock:
            if stored.id not in self._synchronizations:
                raise SynchronizationNotFoundError(
                    f"Synchronization '{stored.id}' is not configured"
                )
            self._synchronizations[stored.id] = stored
            if self._file is not None:
                self._file.save(
                    {
                        sync_id: sync.progress()
                        for sync_id, sync in self._synchronizations.items()
                    }
                )
        return stored

    def find_by_source(
        self, register_id: str | None, schema_id: str | None
    ) -> list[Synchronization]:
        """Synchronizations whose source is the given register/schema pair."""
        return [
            sync
            for sync in self.all()
            if sync.register_id == register_id and sync.schema_id == schema_id
        ]

    # ------------------------------------------------------------------
    # Mappings and rules
    # ------------------------------------------------------------------

    def mapping(self, mapping_id: str) -> Mapping:
        mapping = self._mappings.get(mapping_id)
        if mapping is None:
            raise ReconcileError(f"Mapping '{mapping_id}' is not configured")
        return mapping

    def rules_for(self, synchronization: Synchronization) -> list[Rule]:
        """Rules referenced by *synchronization*; unknown ids are logged."""
        rules = []
        for rule_id in synchronization.rules:
            rule = self._rules.get(rule_id)
            if rule is None:
                logger.warning(
                    "Synchronization %s references unknown rule %s",
                    synchronization.id,
                    rule_id,
                )
                continue
            rules.append(rule)
        return rules
