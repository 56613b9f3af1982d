"""Reconciliation loop: the per-object state machine and full-scan runs.

The ``ReconciliationEngine`` ties together the synchronization store,
source cursor, contract store, rule executor, mapping executor and log
aggregator.  For every source object it runs::

    DISCOVERED -> HASHED -> SKIPPED
                         -> RULED_BEFORE -> MAPPED -> WRITTEN
                            -> RULED_AFTER -> COMMITTED
                  (any step) -> FAILED

Hashes:

* ``origin_hash`` is the content hash of the raw source payload and drives
  the skip decision, so any source change is noticed.
* ``target_hash`` is the content hash of the mapped output; a write whose
  mapped output hashes to the stored ``target_hash`` is elided, so changes
  to unmapped source fields never reach the target.

Error handling is per object: a failing object produces a ``FAILED``
contract log and the run moves on.  Only ``RuleAbortRun`` (and a source
that cannot be listed) ends a run early.  A full scan that reaches the end
of the source prunes contracts whose objects were not seen in the scan by
pushing them through the deletion path.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
import uuid
from collections.abc import Callable, Mapping as MappingType
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sync_reconciler.sync.contracts import ContractStore, InMemoryContractStore
from sync_reconciler.sync.cursor import SourceCursor, SourceObject, extract_origin_id
from sync_reconciler.sync.errors import (
    ContractConflictError,
    LockedError,
    ObjectNotFoundError,
    RateLimitedError,
    ReconcileError,
    RuleAbortRun,
    RuleError,
    TransientError,
)
from sync_reconciler.sync.expressions import (
    ExpressionEvaluator,
    JsonLogicEvaluator,
    check_condition,
)
from sync_reconciler.sync.logs import InMemoryLogStore, LogAggregator, LogStore
from sync_reconciler.sync.mapper import MappingExecutor
from sync_reconciler.sync.models import (
    Mapping,
    MutationType,
    ObjectState,
    ProviderRef,
    ReconcileMode,
    Rule,
    RuleTiming,
    Synchronization,
    SynchronizationContract,
    SynchronizationContractLog,
    SynchronizationLog,
    TargetAction,
)
from sync_reconciler.sync.rules import RuleContext, RuleExecutor
from sync_reconciler.sync.state import content_hash
from sync_reconciler.sync.synchronizations import SynchronizationStore

if TYPE_CHECKING:
    from sync_reconciler.config_schema import LogRetentionConfig
    from sync_reconciler.sync.providers import ObjectProvider

logger = logging.getLogger(__name__)

STOP_CANCELLED = "cancelled"
STOP_DEADLINE = "deadline"
STOP_ABORTED = "aborted"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Run:
    """State shared by the workers of one run (or one single-object call)."""

    synchronization: Synchronization
    rules: list[Rule]
    mapping: Mapping | None
    aggregator: LogAggregator
    force: bool = False
    test: bool = False
    deadline: float | None = None
    cancel: threading.Event | None = None
    single: bool = False
    halt: threading.Event = field(default_factory=threading.Event)
    # Origin ids reached by this run; pruning never touches them.
    seen: set[str] = field(default_factory=set)

    @property
    def mode(self) -> ReconcileMode:
        if self.single:
            return ReconcileMode.SINGLE_OBJECT
        if self.force:
            return ReconcileMode.FORCED
        return ReconcileMode.FULL_SCAN

    def stop_reason(self) -> str | None:
        if self.halt.is_set():
            return STOP_ABORTED
        if self.cancel is not None and self.cancel.is_set():
            return STOP_CANCELLED
        if self.deadline is not None and time.monotonic() > self.deadline:
            return STOP_DEADLINE
        return None


class ReconciliationEngine:
    """Reconcile source objects into a target for configured synchronizations.

    Args:
        synchronizations: Configured synchronizations, mappings and rules.
        providers: Object providers keyed by provider id, or by provider
            type as a fallback.
        contracts: Contract store; defaults to an in-memory store.
        logs: Log store; defaults to an in-memory store.
        evaluator: Expression evaluator for conditions and mappings.
        rule_executor: Rule executor; built from *evaluator* when omitted.
        retention: Log expiry and size caps.
        max_workers: Objects reconciled in parallel within one page.
        execution_time: Run deadline in seconds.
        clock: Wall-clock source for contract and log timestamps.
    """

    def __init__(
        self,
        synchronizations: SynchronizationStore,
        providers: MappingType[str, ObjectProvider],
        contracts: ContractStore | None = None,
        logs: LogStore | None = None,
        evaluator: ExpressionEvaluator | None = None,
        rule_executor: RuleExecutor | None = None,
        retention: LogRetentionConfig | None = None,
        max_workers: int = 4,
        execution_time: float = 3600.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.synchronizations = synchronizations
        self.providers = dict(providers)
        self.contracts = contracts or InMemoryContractStore()
        self.logs = logs or InMemoryLogStore()
        self.evaluator = evaluator or JsonLogicEvaluator()
        self.mapper = MappingExecutor(self.evaluator)
        self.rules = rule_executor or RuleExecutor(
            evaluator=self.evaluator,
            mapper=self.mapper,
            mapping_resolver=synchronizations.mapping,
        )
        self.retention = retention
        self.max_workers = max_workers
        self.execution_time = execution_time
        self._clock = clock

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def reconcile_all(
        self,
        synchronization_id: str,
        force: bool = False,
        test: bool = False,
        cancel: threading.Event | None = None,
    ) -> SynchronizationLog:
        """Run a full scan, resuming from the synchronization's cursor.

        Args:
            synchronization_id: Synchronization to run.
            force: Bypass the hash-equality skip and write elision.
            test: Run the whole pipeline without touching the target,
                contracts or cursor.
            cancel: Set to stop the run; in-flight objects still finish.

        Returns:
            The run's ``SynchronizationLog``.

        Raises:
            SynchronizationNotFoundError: If the synchronization is unknown.
        """
        sync = self.synchronizations.get(synchronization_id)
        run = self._new_run(sync, uuid.uuid4().hex, force=force, test=test)
        run.deadline = time.monotonic() + self.execution_time
        run.cancel = cancel

        now = self._clock()
        resumed = sync.current_page > 1
        if resumed and sync.current_scan_started is None:
            # Progress from a scan whose start is unknown: pages before the
            # cursor may hold unseen contracts, so pruning is not safe.
            logger.warning(
                "Resuming %s at page %d without a scan start; pruning disabled",
                sync.id,
                sync.current_page,
            )
            scan_started = None
        elif resumed:
            scan_started = sync.current_scan_started
        else:
            scan_started = now
            sync = self._persist(
                run, sync.model_copy(update={"current_scan_started": now})
            )
        run.synchronization = sync

        logger.info(
            "Starting %s %s run of %s at page %d (test=%s)",
            "resumed" if resumed else "new",
            run.mode.value,
            sync.id,
            sync.current_page,
            test,
        )

        objects_found = 0
        pages = 0
        stopped_reason: str | None = None
        error: str | None = None
        rate_limit_reset: str | None = None
        completed = False

        try:
            cursor = SourceCursor(
                self._provider(sync.source),
                store=None if test else self.synchronizations,
            )
            for page in cursor.pages(sync):
                objects_found += page.size
                for payload in page.unidentified:
                    self._record_unidentified(run, payload)
                stopped_reason = self._run_page(run, page.objects)
                if stopped_reason is not None:
                    break
                pages += 1
                sync = cursor.advance(sync, page.number + 1)
                run.synchronization = sync
                stopped_reason = run.stop_reason()
                if stopped_reason is not None and page.has_more:
                    break
                stopped_reason = None
            else:
                completed = True
        except RuleAbortRun as exc:
            error = str(exc)
            stopped_reason = STOP_ABORTED
        except RateLimitedError as exc:
            logger.warning("Source of %s is rate limited: %s", sync.id, exc)
            error = str(exc)
            rate_limit_reset = str(exc.reset) if exc.reset is not None else None
        except ReconcileError as exc:
            logger.error("Listing source of %s failed: %s", sync.id, exc)
            error = str(exc)
        except Exception as exc:
            logger.exception("Run of %s failed", sync.id)
            error = f"Unexpected error: {exc}"

        if stopped_reason == STOP_ABORTED and error is None:
            error = "Run aborted by rule"

        if completed and error is None:
            if scan_started is not None and not test:
                try:
                    self._prune(run, scan_started)
                except RuleAbortRun as exc:
                    error = str(exc)
                    stopped_reason = STOP_ABORTED
                except Exception as exc:
                    logger.exception("Pruning %s failed", sync.id)
                    error = f"Unexpected error: {exc}"

        end = self._clock()
        counts = run.aggregator.counts()
        updates: dict[str, Any] = {
            "source_last_checked": end,
            "target_last_checked": end,
        }
        if completed:
            updates.update(current_page=1, current_scan_started=None)
            if error is None:
                updates["source_last_synced"] = end
        if counts["created"] or counts["updated"] or counts["deleted"]:
            updates["target_last_changed"] = end
            updates["target_last_synced"] = end
        self._persist(run, sync.model_copy(update=updates))

        log = run.aggregator.finish(
            objects_found=objects_found,
            pages=pages,
            stopped_reason=stopped_reason,
            error=error,
            rate_limit_reset=rate_limit_reset,
        )
        logger.info(
            "Finished run of %s: %s",
            sync.id,
            " ".join(f"{key}={value}" for key, value in counts.items()),
        )
        return log

    def reconcile_one(
        self,
        synchronization_id: str,
        payload: Any,
        mutation_type: MutationType = MutationType.UPDATE,
        force: bool = False,
    ) -> SynchronizationContractLog:
        """Reconcile a single source object, typically from an event.

        Creates and updates run the regular pipeline; deletes go through
        the deletion path for the object's contract.  The cursor is never
        touched.

        Raises:
            SynchronizationNotFoundError: If the synchronization is unknown.
        """
        sync = self.synchronizations.get(synchronization_id)
        run = self._new_run(sync, None, force=force)
        run.single = True
        origin_id = extract_origin_id(payload, sync.source.config.get("id_position"))
        if origin_id is None:
            return self._record_unidentified(run, payload)

        if mutation_type != MutationType.DELETE:
            return self._reconcile_object(run, SourceObject(origin_id, payload))

        contract = self.contracts.find_by_origin_id(sync.id, origin_id)
        if contract is None:
            return run.aggregator.record(
                origin_id,
                ObjectState.SKIPPED,
                TargetAction.SKIP,
                source=payload,
                message="No contract for deleted object",
            )
        try:
            return self._delete(run, contract)
        except RuleAbortRun as exc:
            return run.aggregator.record(
                origin_id,
                ObjectState.FAILED,
                contract_id=contract.id,
                message=str(exc),
            )
        except Exception as exc:
            logger.exception("Unexpected error deleting %s/%s", sync.id, origin_id)
            return run.aggregator.record(
                origin_id,
                ObjectState.FAILED,
                contract_id=contract.id,
                message=f"Unexpected error: {exc}",
            )

    def find_synchronizations_by_source(
        self, register_id: str | None, schema_id: str | None
    ) -> list[Synchronization]:
        return self.synchronizations.find_by_source(register_id, schema_id)

    def status(self, synchronization_id: str) -> dict[str, Any]:
        """Cursor, contract count and last run of one synchronization."""
        sync = self.synchronizations.get(synchronization_id)
        runs = self.logs.run_logs(sync.id)
        contracts = self.contracts.all_for_synchronization(sync.id)
        return {
            "synchronization": sync.id,
            "current_page": sync.current_page,
            "contracts": len(contracts),
            "delete_failed": sum(
                1
                for contract in contracts
                if contract.target_last_action == TargetAction.DELETE_FAILED
            ),
            "last_run": runs[-1].model_dump(mode="json") if runs else None,
            **sync.progress(),
        }

    # ------------------------------------------------------------------
    # Run plumbing
    # ------------------------------------------------------------------

    def _new_run(
        self,
        sync: Synchronization,
        run_id: str | None,
        force: bool = False,
        test: bool = False,
    ) -> _Run:
        mapping = (
            self.synchronizations.mapping(sync.source_target_mapping)
            if sync.source_target_mapping
            else None
        )
        aggregator = LogAggregator(
            sync,
            self.logs,
            retention=self.retention,
            run_id=run_id,
            test=test,
            force=force,
            clock=self._clock,
        )
        return _Run(
            synchronization=sync,
            rules=self.synchronizations.rules_for(sync),
            mapping=mapping,
            aggregator=aggregator,
            force=force,
            test=test,
        )

    def _provider(self, ref: ProviderRef) -> ObjectProvider:
        provider = self.providers.get(ref.id) or self.providers.get(ref.type)
        if provider is None:
            raise ReconcileError(
                f"No object provider for '{ref.id}' (type {ref.type})"
            )
        return provider

    def _persist(self, run: _Run, sync: Synchronization) -> Synchronization:
        if run.test:
            return sync
        return self.synchronizations.save(sync)

    def _run_page(self, run: _Run, objects: list[SourceObject]) -> str | None:
        """Reconcile one page in the worker pool.

        Returns a stop reason if not every object of the page was started.

        Raises:
            RuleAbortRun: If a rule aborted the run.
        """
        if not objects:
            return run.stop_reason()

        abort: RuleAbortRun | None = None
        started = 0
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [
                pool.submit(self._worker, run, obj) for obj in objects
            ]
            for future in futures:
                try:
                    if future.result():
                        started += 1
                except RuleAbortRun as exc:
                    started += 1
                    if abort is None:
                        abort = exc

        if abort is not None:
            raise abort
        if started < len(objects):
            return run.stop_reason() or STOP_CANCELLED
        return None

    def _worker(self, run: _Run, obj: SourceObject) -> bool:
        """Reconcile *obj* unless the run is stopping.  Returns ``True`` if started."""
        if run.stop_reason() is not None:
            return False
        try:
            self._reconcile_object(run, obj)
        except RuleAbortRun:
            run.halt.set()
            raise
        return True

    # ------------------------------------------------------------------
    # Per-object state machine
    # ------------------------------------------------------------------

    def _reconcile_object(
        self, run: _Run, obj: SourceObject
    ) -> SynchronizationContractLog:
        sync = run.synchronization
        contract: SynchronizationContract | None = None
        try:
            # DISCOVERED
            if not check_condition(self.evaluator, sync.conditions, obj.payload):
                return run.aggregator.record(
                    obj.origin_id,
                    ObjectState.SKIPPED,
                    TargetAction.SKIP,
                    source=obj.payload,
                    message="Object does not meet the synchronization conditions",
                )

            run.seen.add(obj.origin_id)
            origin_hash = content_hash(obj.payload)
            contract = self.contracts.find_or_create(sync.id, obj.origin_id)
            try:
                return self._pipeline(run, obj, contract, origin_hash)
            except ContractConflictError:
                logger.info(
                    "Contract conflict on %s/%s, re-reading",
                    sync.id,
                    obj.origin_id,
                )
                contract = self.contracts.find_or_create(sync.id, obj.origin_id)
                return self._pipeline(run, obj, contract, origin_hash)
        except ContractConflictError as exc:
            return run.aggregator.record(
                obj.origin_id,
                ObjectState.FAILED,
                source=obj.payload,
                message=str(exc),
            )
        except RuleAbortRun as exc:
            entry = run.aggregator.record(
                obj.origin_id,
                ObjectState.FAILED,
                contract_id=self._saved_id(contract) if contract else None,
                source=obj.payload,
                message=str(exc),
            )
            if run.single:
                return entry
            raise
        except Exception as exc:
            logger.exception(
                "Unexpected error reconciling %s/%s", sync.id, obj.origin_id
            )
            # The object is still in the source: keep it out of pruning and
            # record liveness only, so the next run retries it.
            run.seen.add(obj.origin_id)
            if contract is not None:
                contract = self._mark_checked(run, contract)
            return run.aggregator.record(
                obj.origin_id,
                ObjectState.FAILED,
                contract_id=self._saved_id(contract) if contract else None,
                source=obj.payload,
                message=f"Unexpected error: {exc}",
            )

    def _mark_checked(
        self, run: _Run, contract: SynchronizationContract
    ) -> SynchronizationContract:
        try:
            return self._commit(run, contract, {"source_last_checked": self._clock()})
        except Exception as exc:
            logger.warning(
                "Could not record check of %s: %s", contract.origin_id, exc
            )
            return contract

    def _record_unidentified(
        self, run: _Run, payload: Any
    ) -> SynchronizationContractLog:
        return run.aggregator.record(
            None,
            ObjectState.FAILED,
            source=payload,
            message="Object has no origin id",
        )

    def _pipeline(
        self,
        run: _Run,
        obj: SourceObject,
        contract: SynchronizationContract,
        origin_hash: str,
    ) -> SynchronizationContractLog:
        sync = run.synchronization
        now = self._clock()

        # HASHED
        if (
            not run.force
            and contract.origin_hash == origin_hash
            and contract.target_last_action != TargetAction.DELETE_FAILED
        ):
            self._commit(run, contract, {"source_last_checked": now})
            return run.aggregator.record(
                obj.origin_id,
                ObjectState.SKIPPED,
                TargetAction.SKIP,
                contract_id=self._saved_id(contract),
                source=obj.payload,
            )

        action = MutationType.UPDATE if contract.target_id else MutationType.CREATE
        ctx = RuleContext(
            synchronization=sync,
            origin_id=obj.origin_id,
            action=action,
            source=copy.deepcopy(obj.payload),
            target_id=contract.target_id,
            run_id=run.aggregator.run_id,
        )
        written = False
        target_hash: str | None = None
        target_action = TargetAction.SKIP
        try:
            # RULED_BEFORE
            before = self.rules.run_rules(run.rules, RuleTiming.BEFORE, ctx)
            if before.error is not None:
                return self._fail(run, obj, contract, origin_hash, before.error)

            # MAPPED
            notes = list(ctx.warnings)
            if run.mapping is not None:
                outcome = self.mapper.apply(run.mapping, ctx.source)
                ctx.target = outcome.output
                target_hash = outcome.hash
                notes.extend(str(err) for err in outcome.errors)
            else:
                ctx.target = copy.deepcopy(ctx.source)
                target_hash = content_hash(ctx.target)

            # WRITTEN
            if (
                not run.force
                and contract.target_id is not None
                and contract.target_hash == target_hash
                and contract.target_last_action != TargetAction.DELETE_FAILED
            ):
                logger.debug("Write elided for %s: target unchanged", obj.origin_id)
            else:
                target_action = (
                    TargetAction.UPDATE if contract.target_id else TargetAction.CREATE
                )
                if not run.test:
                    ctx.target_id = self._provider(sync.target).write(
                        sync.target, ctx.target, contract.target_id
                    )
                    written = True

            # RULED_AFTER
            ctx.warnings.clear()
            after = self.rules.run_rules(run.rules, RuleTiming.AFTER, ctx)
            notes.extend(ctx.warnings)
            if after.error is not None:
                if written:
                    # The target changed; keep what we know about it but leave
                    # origin_hash alone so the object is retried.
                    contract = self._commit(
                        run,
                        contract,
                        self._target_updates(ctx, target_hash, target_action, now)
                        | {"source_last_checked": now},
                    )
                return self._fail(
                    run, obj, contract, None, after.error, target=ctx.target
                )
        except (RuleAbortRun, ContractConflictError):
            raise
        except TransientError as exc:
            return self._fail(run, obj, contract, None, exc)
        except ReconcileError as exc:
            # Mapping errors, rule errors and rejected writes repeat until
            # the source object changes.
            return self._fail(run, obj, contract, origin_hash, exc)
        finally:
            self.rules.release_locks(ctx)

        # COMMITTED
        updates = self._target_updates(ctx, target_hash, target_action, now)
        updates.update(
            origin_hash=origin_hash,
            source_last_checked=now,
            source_last_synced=now,
        )
        if contract.origin_hash != origin_hash:
            updates["source_last_changed"] = now
        saved = self._commit(run, contract, updates)
        return run.aggregator.record(
            obj.origin_id,
            ObjectState.COMMITTED,
            target_action,
            contract_id=None if run.test else saved.id,
            source=obj.payload,
            target=ctx.target,
            message="; ".join(notes) or None,
        )

    def _target_updates(
        self,
        ctx: RuleContext,
        target_hash: str | None,
        target_action: TargetAction,
        now: datetime,
    ) -> dict[str, Any]:
        updates: dict[str, Any] = {
            "target_hash": target_hash,
            "target_last_checked": now,
            "target_last_action": target_action,
        }
        if target_action != TargetAction.SKIP:
            updates.update(
                target_id=ctx.target_id,
                target_last_changed=now,
                target_last_synced=now,
            )
        return updates

    def _fail(
        self,
        run: _Run,
        obj: SourceObject,
        contract: SynchronizationContract,
        origin_hash: str | None,
        exc: Exception,
        target: Any = None,
    ) -> SynchronizationContractLog:
        """Record a failed object.

        With *origin_hash* the failure is deterministic: the hash is stored
        so the object is not retried until the source changes.  Without it
        only liveness is recorded and the next run retries.
        """
        if isinstance(exc, RuleError) and isinstance(exc.__cause__, LockedError):
            origin_hash = None

        updates: dict[str, Any] = {"source_last_checked": self._clock()}
        if origin_hash is not None:
            updates["origin_hash"] = origin_hash
        try:
            saved = self._commit(run, contract, updates)
        except ContractConflictError:
            logger.info(
                "Contract for %s changed concurrently; keeping the other writer's state",
                obj.origin_id,
            )
            saved = contract

        logger.info("Reconciling %s failed: %s", obj.origin_id, exc)
        return run.aggregator.record(
            obj.origin_id,
            ObjectState.FAILED,
            contract_id=self._saved_id(saved) if not run.test else None,
            source=obj.payload,
            target=target,
            message=str(exc),
        )

    def _commit(
        self,
        run: _Run,
        contract: SynchronizationContract,
        updates: dict[str, Any],
    ) -> SynchronizationContract:
        updated = contract.model_copy(update=updates)
        if run.test:
            return updated
        return self.contracts.save(updated)

    @staticmethod
    def _saved_id(contract: SynchronizationContract) -> str | None:
        return contract.id if contract.revision > 0 else None

    # ------------------------------------------------------------------
    # Deletion path
    # ------------------------------------------------------------------

    def _delete(
        self, run: _Run, contract: SynchronizationContract
    ) -> SynchronizationContractLog:
        """Delete the target object of *contract*, then the contract.

        A target that is already gone counts as deleted.  A failed delete,
        whatever it raised, pins the contract with ``delete-failed`` so the
        next run retries.  A contract that never had a target is removed
        and recorded as a skip.
        """
        sync = run.synchronization
        now = self._clock()
        ctx = RuleContext(
            synchronization=sync,
            origin_id=contract.origin_id,
            action=MutationType.DELETE,
            target_id=contract.target_id,
            run_id=run.aggregator.run_id,
        )
        try:
            before = self.rules.run_rules(run.rules, RuleTiming.BEFORE, ctx)
            if before.error is not None:
                return self._delete_failed(run, contract, before.error, now)

            if contract.target_id is not None and not run.test:
                try:
                    self._provider(sync.target).delete(sync.target, contract.target_id)
                except ObjectNotFoundError:
                    logger.info(
                        "Target object %s of %s already absent",
                        contract.target_id,
                        contract.origin_id,
                    )

            after = self.rules.run_rules(run.rules, RuleTiming.AFTER, ctx)
            if after.error is not None:
                logger.warning(
                    "After-delete rule failed for %s: %s",
                    contract.origin_id,
                    after.error,
                )
        except RuleAbortRun:
            raise
        except ReconcileError as exc:
            return self._delete_failed(run, contract, exc, now)
        except Exception as exc:
            logger.exception(
                "Unexpected error deleting target of %s", contract.origin_id
            )
            return self._delete_failed(run, contract, exc, now)
        finally:
            self.rules.release_locks(ctx)

        if not run.test:
            self.contracts.delete_by_origin_id(sync.id, contract.origin_id)
        if contract.target_id is None:
            return run.aggregator.record(
                contract.origin_id,
                ObjectState.SKIPPED,
                TargetAction.SKIP,
                contract_id=contract.id,
                message="No target object to delete",
            )
        return run.aggregator.record(
            contract.origin_id,
            ObjectState.COMMITTED,
            TargetAction.DELETE,
            contract_id=contract.id,
        )

    def _delete_failed(
        self,
        run: _Run,
        contract: SynchronizationContract,
        exc: Exception,
        now: datetime,
    ) -> SynchronizationContractLog:
        logger.warning("Deleting target of %s failed: %s", contract.origin_id, exc)
        try:
            self._commit(
                run,
                contract,
                {
                    "target_last_action": TargetAction.DELETE_FAILED,
                    "target_last_checked": now,
                },
            )
        except ContractConflictError:
            logger.info("Contract for %s changed during delete", contract.origin_id)
        return run.aggregator.record(
            contract.origin_id,
            ObjectState.FAILED,
            TargetAction.DELETE_FAILED,
            contract_id=contract.id,
            message=str(exc),
        )

    def _prune(self, run: _Run, scan_started: datetime) -> int:
        """Delete contracts whose objects were not seen since *scan_started*.

        Objects reached by this run are never pruned, even when recording
        their check failed.
        """
        sync = run.synchronization
        stale = [
            contract
            for contract in self.contracts.all_for_synchronization(sync.id)
            if contract.origin_id not in run.seen
            and (
                contract.source_last_checked is None
                or contract.source_last_checked < scan_started
            )
        ]
        for contract in stale:
            logger.info(
                "Object %s no longer in source of %s; deleting",
                contract.origin_id,
                sync.id,
            )
            try:
                self._delete(run, contract)
            except RuleAbortRun:
                raise
            except Exception as exc:
                logger.exception("Pruning %s failed", contract.origin_id)
                run.aggregator.record(
                    contract.origin_id,
                    ObjectState.FAILED,
                    contract_id=contract.id,
                    message=f"Unexpected error: {exc}",
                )
        return len(stale)
