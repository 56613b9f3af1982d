"""Shared pytest fixtures for sync-reconciler tests."""

from __future__ import annotations

import copy
import threading
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from dotenv import load_dotenv

from sync_reconciler.config import Config
from sync_reconciler.sync.contracts import InMemoryContractStore
from sync_reconciler.sync.engine import ReconciliationEngine
from sync_reconciler.sync.errors import (
    ObjectNotFoundError,
    ReconcileError,
    TransientError,
)
from sync_reconciler.sync.logs import InMemoryLogStore
from sync_reconciler.sync.models import Mapping, ProviderRef, Rule, Synchronization
from sync_reconciler.sync.synchronizations import SynchronizationStore

load_dotenv()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Strictly increasing UTC clock; every call advances one second."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            self.now += timedelta(seconds=1)
            return self.now


class FakeSource:
    """Paged in-memory source.

    ``pages`` is a list of pages, each a list of payloads.  ``failures``
    maps a page number to an exception raised (once) when it is listed.
    """

    def __init__(self, pages: list[list[dict]] | None = None) -> None:
        self.pages: list[list[dict]] = pages or []
        self.failures: dict[int, Exception] = {}
        self.listed: list[int] = []

    def list(self, synchronization: Synchronization, page: int) -> tuple[list, bool]:
        self.listed.append(page)
        error = self.failures.pop(page, None)
        if error is not None:
            raise error
        if page > len(self.pages):
            return [], False
        return copy.deepcopy(self.pages[page - 1]), page < len(self.pages)

    def write(self, ref, payload, existing_target_id):
        raise AssertionError("source must not be written")

    def delete(self, ref, target_id):
        raise AssertionError("source must not be deleted from")

    def get(self, ref, target_id):
        raise AssertionError("source objects are listed, not fetched")


class FakeTarget:
    """In-memory target that records every write and delete.

    New objects get the id ``t<payload id>`` so ids do not depend on the
    order in which workers write.
    """

    def __init__(self) -> None:
        self.objects: dict[str, Any] = {}
        self.writes: list[tuple[str | None, Any]] = []
        self.deletes: list[str] = []
        self.reject_write: set[str] = set()
        self.unavailable: set[str] = set()
        self.fail_delete: set[str] = set()
        self._next_id = 0

    def list(self, synchronization, page):
        return list(self.objects.values()), False

    def write(self, ref: ProviderRef, payload: Any, existing_target_id: str | None) -> str:
        self.writes.append((existing_target_id, copy.deepcopy(payload)))
        payload_id = payload.get("id") if isinstance(payload, dict) else None
        if payload_id in self.unavailable:
            raise TransientError(f"Target unavailable for {payload_id}")
        if payload_id in self.reject_write:
            raise ReconcileError(f"Target rejected {payload_id}")
        if existing_target_id is None and payload_id is not None:
            target_id = f"t{payload_id}"
        elif existing_target_id is None:
            self._next_id += 1
            target_id = f"t{self._next_id}"
        else:
            target_id = existing_target_id
        self.objects[target_id] = copy.deepcopy(payload)
        return target_id

    def delete(self, ref: ProviderRef, target_id: str) -> None:
        self.deletes.append(target_id)
        if target_id in self.fail_delete:
            raise ReconcileError(f"Cannot delete {target_id}")
        if target_id not in self.objects:
            raise ObjectNotFoundError(f"{target_id} not found")
        del self.objects[target_id]

    def get(self, ref: ProviderRef, target_id: str) -> Any:
        if target_id not in self.objects:
            raise ObjectNotFoundError(f"{target_id} not found")
        return self.objects[target_id]


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def build_sync(**overrides: Any) -> Synchronization:
    defaults: dict[str, Any] = {
        "id": "people",
        "name": "People",
        "source": ProviderRef(id="source", type="fake"),
        "target": ProviderRef(id="target", type="fake"),
    }
    defaults.update(overrides)
    return Synchronization(**defaults)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def make_engine(source, target, clock):
    """Factory building an engine around the ``source``/``target`` fakes."""

    def _make(
        sync: Synchronization | None = None,
        mappings: list[Mapping] | None = None,
        rules: list[Rule] | None = None,
        **engine_kwargs: Any,
    ) -> ReconciliationEngine:
        store = SynchronizationStore(
            [sync or build_sync()], mappings or [], rules or []
        )
        engine_kwargs.setdefault("contracts", InMemoryContractStore())
        engine_kwargs.setdefault("logs", InMemoryLogStore())
        return ReconciliationEngine(
            store,
            {"source": source, "target": target},
            clock=clock,
            **engine_kwargs,
        )

    return _make


@pytest.fixture
def mock_config() -> Config:
    """Runtime config keeping all state in memory."""
    return Config(state_dir=None, max_workers=2, execution_time=60.0)


@pytest.fixture
def make_sync():
    """Factory for ``Synchronization`` models reading from the fakes."""
    return build_sync
