"""Run and per-object logs.

``LogAggregator`` collects the outcome of every object during one run
(thread-safe, workers call ``record()`` concurrently) and produces the
``SynchronizationLog`` summary at the end.  Both log kinds always carry an
``expires`` timestamp and their serialised ``size``; source/target
snapshots larger than ``snapshot_max_bytes`` are replaced by a truncated
preview.

``LogStore`` persists logs and reaps them:

* ``clear_expired()`` drops every log whose ``expires`` has passed;
* ``set_expiry()`` back-fills ``expires`` on stored rows that lack one;
* ``total_size()`` reports how many bytes the stored logs take.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sync_reconciler.sync.models import (
    ObjectState,
    RunResult,
    Synchronization,
    SynchronizationContractLog,
    SynchronizationLog,
    TargetAction,
)
from sync_reconciler.sync.state import stable_dumps

if TYPE_CHECKING:
    from sync_reconciler.config_schema import LogRetentionConfig

logger = logging.getLogger(__name__)

TRUNCATED_KEY = "_truncated"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def truncate_snapshot(value: Any, max_bytes: int) -> Any:
    """Return *value*, or a preview marker if it serialises above *max_bytes*."""
    if value is None:
        return None
    text = stable_dumps(value)
    size = len(text.encode("utf-8"))
    if size <= max_bytes:
        return value
    preview = text.encode("utf-8")[: max(max_bytes - 128, 0)].decode(
        "utf-8", errors="ignore"
    )
    return {TRUNCATED_KEY: True, "size": size, "preview": preview}


def _parse_time(value: str) -> datetime:
    # JSON rows carry pydantic's "Z" suffix for UTC.
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _serialised_size(model: Any) -> int:
    return len(model.model_dump_json().encode("utf-8"))


class LogAggregator:
    """Collect per-object outcomes for one run (or one single-object call).

    Args:
        synchronization: The synchronization being reconciled.
        store: Where contract logs are written as they are recorded.
        retention: Expiry and size caps.
        run_id: Id of the run log; ``None`` for single-object calls.
        test: Flag logs as produced by a test run.
        force: Flag logs as produced by a forced run.
        clock: Time source, injectable for tests.
    """

    def __init__(
        self,
        synchronization: Synchronization,
        store: LogStore,
        retention: LogRetentionConfig | None = None,
        run_id: str | None = None,
        test: bool = False,
        force: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.synchronization = synchronization
        self.store = store
        if retention is None:
            from sync_reconciler.config_schema import LogRetentionConfig

            retention = LogRetentionConfig()
        self.retention = retention
        self.run_id = run_id
        self.test = test
        self.force = force
        self._clock = clock
        self._lock = threading.Lock()
        self._counts = {
            "created": 0,
            "updated": 0,
            "deleted": 0,
            "skipped": 0,
            "failed": 0,
        }
        self._contracts: list[str] = []
        self.started = clock()

    def record(
        self,
        origin_id: str | None,
        state: ObjectState,
        target_result: TargetAction | None = None,
        contract_id: str | None = None,
        source: Any = None,
        target: Any = None,
        message: str | None = None,
    ) -> SynchronizationContractLog:
        """Record one object's outcome and persist its contract log."""
        now = self._clock()
        entry = SynchronizationContractLog(
            id=uuid.uuid4().hex,
            synchronization_id=self.synchronization.id,
            synchronization_contract_id=contract_id,
            synchronization_log_id=self.run_id,
            origin_id=origin_id,
            state=state,
            target_result=target_result,
            source=truncate_snapshot(source, self.retention.snapshot_max_bytes),
            target=truncate_snapshot(target, self.retention.snapshot_max_bytes),
            message=message,
            test=self.test,
            force=self.force,
            created=now,
            expires=now + timedelta(days=self.retention.contract_log_ttl_days),
        )
        entry = entry.model_copy(update={"size": _serialised_size(entry)})

        with self._lock:
            self._counts[_count_key(state, target_result)] += 1
            if contract_id is not None:
                self._contracts.append(contract_id)
        self.store.add_contract_log(entry)
        return entry

    def counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def finish(
        self,
        objects_found: int = 0,
        pages: int = 0,
        stopped_reason: str | None = None,
        error: str | None = None,
        rate_limit_reset: str | None = None,
        message: str = "",
    ) -> SynchronizationLog:
        """Build, persist and return the run log."""
        now = self._clock()
        with self._lock:
            counts = dict(self._counts)
            contracts = list(dict.fromkeys(self._contracts))

        result = RunResult(
            objects_found=objects_found,
            pages=pages,
            contracts=contracts,
            stopped_reason=stopped_reason,
            error=error,
            rate_limit_reset=rate_limit_reset,
            **counts,
        )
        log = SynchronizationLog(
            id=self.run_id or uuid.uuid4().hex,
            synchronization_id=self.synchronization.id,
            message=message or _default_message(result),
            result=result,
            execution_time_ms=int((now - self.started).total_seconds() * 1000),
            test=self.test,
            force=self.force,
            created=self.started,
            expires=now + timedelta(days=self.retention.sync_log_ttl_days),
        )

        size = _serialised_size(log)
        if size > self.retention.log_max_bytes:
            logger.info(
                "Run log for %s is %d bytes; dropping contract id list",
                self.synchronization.id,
                size,
            )
            log = log.model_copy(
                update={
                    "result": result.model_copy(
                        update={"contracts": [], "contracts_truncated": True}
                    )
                }
            )
            size = _serialised_size(log)
        log = log.model_copy(update={"size": size})

        self.store.add_run_log(log)
        return log


def _count_key(state: ObjectState, target_result: TargetAction | None) -> str:
    if state == ObjectState.FAILED:
        return "failed"
    if state == ObjectState.SKIPPED:
        return "skipped"
    if target_result == TargetAction.CREATE:
        return "created"
    if target_result == TargetAction.UPDATE:
        return "updated"
    if target_result == TargetAction.DELETE:
        return "deleted"
    return "skipped"


def _default_message(result: RunResult) -> str:
    if result.error:
        return f"Run aborted: {result.error}"
    if result.stopped_reason:
        return f"Run stopped early: {result.stopped_reason}"
    return "Run completed"


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class LogStore(ABC):
    """Persistence for run logs and contract logs."""

    @abstractmethod
    def add_run_log(self, log: SynchronizationLog) -> None: ...

    @abstractmethod
    def add_contract_log(self, log: SynchronizationContractLog) -> None: ...

    @abstractmethod
    def run_logs(
        self, synchronization_id: str | None = None
    ) -> list[SynchronizationLog]: ...

    @abstractmethod
    def contract_logs(
        self,
        synchronization_id: str | None = None,
        run_id: str | None = None,
    ) -> list[SynchronizationContractLog]: ...

    @abstractmethod
    def clear_expired(self, now: datetime | None = None) -> int:
        """Remove expired logs; return how many were removed."""

    def set_expiry(self, retention: LogRetentionConfig) -> int:
        """Back-fill ``expires`` on rows without one; return the count."""
        return 0

    def total_size(self, synchronization_id: str | None = None) -> int:
        """Sum of ``size`` across stored run and contract logs."""
        return sum(log.size for log in self.run_logs(synchronization_id)) + sum(
            log.size for log in self.contract_logs(synchronization_id)
        )


class InMemoryLogStore(LogStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: list[SynchronizationLog] = []
        self._entries: list[SynchronizationContractLog] = []

    def add_run_log(self, log: SynchronizationLog) -> None:
        with self._lock:
            self._runs.append(log)

    def add_contract_log(self, log: SynchronizationContractLog) -> None:
        with self._lock:
            self._entries.append(log)

    def run_logs(
        self, synchronization_id: str | None = None
    ) -> list[SynchronizationLog]:
        with self._lock:
            return [
                log
                for log in self._runs
                if synchronization_id in (None, log.synchronization_id)
            ]

    def contract_logs(
        self,
        synchronization_id: str | None = None,
        run_id: str | None = None,
    ) -> list[SynchronizationContractLog]:
        with self._lock:
            return [
                log
                for log in self._entries
                if synchronization_id in (None, log.synchronization_id)
                and run_id in (None, log.synchronization_log_id)
            ]

    def clear_expired(self, now: datetime | None = None) -> int:
        now = now or _utcnow()
        with self._lock:
            before = len(self._runs) + len(self._entries)
            self._runs = [log for log in self._runs if log.expires > now]
            self._entries = [log for log in self._entries if log.expires > now]
            return before - len(self._runs) - len(self._entries)


class FileLogStore(LogStore):
    """Logs appended as JSON lines to ``sync_logs.jsonl`` and
    ``contract_logs.jsonl`` under ``state_dir``.

    Args:
        state_dir: Directory holding the log files.
    """

    RUN_FILE = "sync_logs.jsonl"
    CONTRACT_FILE = "contract_logs.jsonl"

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = Path(state_dir)
        # Reentrant: cleanup holds it across read, filter and rewrite.
        self._lock = threading.RLock()

    def _path(self, name: str) -> Path:
        return self.state_dir / name

    def _append(self, name: str, model: Any) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        line = model.model_dump_json()
        with self._lock:
            with open(self._path(name), "a", encoding="utf-8") as fh:
                fh.write(line + "\n")

    def _read(self, name: str) -> list[dict[str, Any]]:
        path = self._path(name)
        if not path.exists():
            return []
        rows = []
        with self._lock:
            with open(path, encoding="utf-8") as fh:
                for number, line in enumerate(fh, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        rows.append(json.loads(line))
                    except json.JSONDecodeError:
                        logger.warning("Skipping corrupt line %d in %s", number, path)
        return rows

    def _rewrite(self, name: str, rows: list[dict[str, Any]]) -> None:
        path = self._path(name)
        tmp = path.with_suffix(".tmp")
        with self._lock:
            with open(tmp, "w", encoding="utf-8") as fh:
                for row in rows:
                    fh.write(json.dumps(row, default=str) + "\n")
            tmp.replace(path)

    def add_run_log(self, log: SynchronizationLog) -> None:
        self._append(self.RUN_FILE, log)

    def add_contract_log(self, log: SynchronizationContractLog) -> None:
        self._append(self.CONTRACT_FILE, log)

    def run_logs(
        self, synchronization_id: str | None = None
    ) -> list[SynchronizationLog]:
        return [
            SynchronizationLog.model_validate(row)
            for row in self._read(self.RUN_FILE)
            if "expires" in row
            and synchronization_id in (None, row.get("synchronization_id"))
        ]

    def contract_logs(
        self,
        synchronization_id: str | None = None,
        run_id: str | None = None,
    ) -> list[SynchronizationContractLog]:
        return [
            SynchronizationContractLog.model_validate(row)
            for row in self._read(self.CONTRACT_FILE)
            if "expires" in row
            and synchronization_id in (None, row.get("synchronization_id"))
            and run_id in (None, row.get("synchronization_log_id"))
        ]

    def clear_expired(self, now: datetime | None = None) -> int:
        now = now or _utcnow()
        removed = 0
        for name in (self.RUN_FILE, self.CONTRACT_FILE):
            with self._lock:
                rows = self._read(name)
                kept = [
                    row
                    for row in rows
                    if not row.get("expires")
                    or _parse_time(row["expires"]) > now
                ]
                if len(kept) != len(rows):
                    removed += len(rows) - len(kept)
                    self._rewrite(name, kept)
        if removed:
            logger.info("Removed %d expired log entries", removed)
        return removed

    def set_expiry(self, retention: LogRetentionConfig) -> int:
        ttls = {
            self.RUN_FILE: retention.sync_log_ttl_days,
            self.CONTRACT_FILE: retention.contract_log_ttl_days,
        }
        updated = 0
        for name, days in ttls.items():
            with self._lock:
                rows = self._read(name)
                changed = False
                for row in rows:
                    if row.get("expires"):
                        continue
                    created = row.get("created")
                    base = _parse_time(created) if created else _utcnow()
                    row["expires"] = (base + timedelta(days=days)).isoformat()
                    updated += 1
                    changed = True
                if changed:
                    self._rewrite(name, rows)
        return updated
