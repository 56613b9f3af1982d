"""Contract stores: the unit of idempotency.

A contract links one source object (``origin_id``) to one target object for
one synchronization.  Stores guarantee at most one live contract per
``(synchronization_id, origin_id)`` and use an optimistic revision counter
so that two writers racing on the same object cannot silently overwrite
each other: the loser's ``save()`` raises ``ContractConflictError`` and the
caller re-reads with ``find_or_create()``.

Two implementations:

* ``InMemoryContractStore`` -- tests and throwaway runs.
* ``FileContractStore`` -- one atomic JSON document per synchronization
  under ``state_dir``.
"""

from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

from sync_reconciler.sync.errors import ContractConflictError
from sync_reconciler.sync.models import SynchronizationContract
from sync_reconciler.sync.state import StateFile, safe_filename

logger = logging.getLogger(__name__)


class ContractStore(ABC):
    """Base class holding the uniqueness and revision logic.

    Subclasses only provide loading and storing of the per-synchronization
    table (``origin_id -> contract``).
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    @abstractmethod
    def _table(self, synchronization_id: str) -> dict[str, SynchronizationContract]:
        """Return the live table for *synchronization_id* (mutable)."""

    @abstractmethod
    def _flush(self, synchronization_id: str) -> None:
        """Persist the table for *synchronization_id*."""

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_or_create(
        self, synchronization_id: str, origin_id: str
    ) -> SynchronizationContract:
        """Return the contract for the pair, or a new unsaved one.

        A new contract has ``revision == 0`` and is not stored until
        ``save()`` is called.
        """
        with self._lock:
            existing = self._table(synchronization_id).get(origin_id)
        if existing is not None:
            return existing
        return SynchronizationContract(
            id=uuid.uuid4().hex,
            synchronization_id=synchronization_id,
            origin_id=origin_id,
        )

    def find_by_origin_id(
        self, synchronization_id: str, origin_id: str
    ) -> SynchronizationContract | None:
        with self._lock:
            return self._table(synchronization_id).get(origin_id)

    def find_by_target_id(
        self, synchronization_id: str, target_id: str
    ) -> SynchronizationContract | None:
        with self._lock:
            for contract in self._table(synchronization_id).values():
                if contract.target_id == target_id:
                    return contract
        return None

    def all_for_synchronization(
        self, synchronization_id: str
    ) -> list[SynchronizationContract]:
        with self._lock:
            return list(self._table(synchronization_id).values())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def save(self, contract: SynchronizationContract) -> SynchronizationContract:
        """Store *contract* and return the stored copy (revision bumped).

        Raises:
            ContractConflictError: If another writer saved the pair since
                *contract* was read.
        """
        now = datetime.now(timezone.utc)
        with self._lock:
            table = self._table(contract.synchronization_id)
            current = table.get(contract.origin_id)
            current_revision = current.revision if current is not None else 0
            if contract.revision != current_revision or (
                current is not None and current.id != contract.id
            ):
                raise ContractConflictError(
                    f"Contract for '{contract.origin_id}' changed concurrently "
                    f"(expected revision {contract.revision}, "
                    f"found {current_revision})"
                )

            stored = contract.model_copy(
                update={
                    "revision": contract.revision + 1,
                    "created": contract.created or now,
                    "updated": now,
                }
            )
            table[contract.origin_id] = stored
            self._flush(contract.synchronization_id)
        return stored

    def delete_by_origin_id(self, synchronization_id: str, origin_id: str) -> bool:
        """Remove the contract for the pair.  Returns ``False`` if absent."""
        with self._lock:
            table = self._table(synchronization_id)
            if origin_id not in table:
                return False
            del table[origin_id]
            self._flush(synchronization_id)
        logger.debug("Deleted contract %s/%s", synchronization_id, origin_id)
        return True


class InMemoryContractStore(ContractStore):
    def __init__(self) -> None:
        super().__init__()
        self._tables: dict[str, dict[str, SynchronizationContract]] = {}

    def _table(self, synchronization_id: str) -> dict[str, SynchronizationContract]:
        return self._tables.setdefault(synchronization_id, {})

    def _flush(self, synchronization_id: str) -> None:
        pass


class FileContractStore(ContractStore):
    """Contracts persisted as ``contracts_<synchronization>.json``.

    Tables are loaded lazily and kept in memory; every mutation rewrites
    the synchronization's file atomically.

    Args:
        state_dir: Directory holding the JSON files.
    """

    def __init__(self, state_dir: Path) -> None:
        super().__init__()
        self.state_dir = Path(state_dir)
        self._tables: dict[str, dict[str, SynchronizationContract]] = {}

    def _file(self, synchronization_id: str) -> StateFile:
        name = f"contracts_{safe_filename(synchronization_id)}.json"
        return StateFile(self.state_dir / name)

    def _table(self, synchronization_id: str) -> dict[str, SynchronizationContract]:
        table = self._tables.get(synchronization_id)
        if table is None:
            raw = self._file(synchronization_id).load(default={})
            table = {
                item["origin_id"]: SynchronizationContract.model_validate(item)
                for item in raw.get("contracts", [])
            }
            self._tables[synchronization_id] = table
        return table

    def _flush(self, synchronization_id: str) -> None:
        table = self._tables.get(synchronization_id, {})
        self._file(synchronization_id).save(
            {
                "synchronization_id": synchronization_id,
                "contracts": [
                    contract.model_dump(mode="json")
                    for contract in table.values()
                ],
            }
        )
