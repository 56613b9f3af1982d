"""Synchronization reconciliation engine.

Public API for reconciling objects from a source provider into a target
provider under a declared mapping.

Architecture
------------
Every source object is tracked by a **contract** keyed on
``(synchronization_id, origin_id)``.  The contract stores the hash of the
last seen source payload and of the last written target payload, so a run
can tell new, changed, unchanged and removed objects apart without
comparing source and target directly.

Modules:

- ``engine``     -- ``ReconciliationEngine``: full scans and single objects.
- ``cursor``     -- ``SourceCursor``: resumable page iteration.
- ``contracts``  -- contract stores (in memory, JSON files).
- ``mapper``     -- ``MappingExecutor`` with casts (``casts``) and path
  helpers (``paths``).
- ``rules``      -- ``RuleExecutor``: before/after rules with failure policies.
- ``logs``       -- ``LogAggregator`` and log stores with expiry.
- ``events``     -- ``EventTriggerAdapter`` for change events.
- ``action``     -- ``SynchronizationAction`` for job runners.
- ``providers``  -- ``ObjectProvider`` protocol and the REST provider.
- ``reporter``   -- human-readable and JSON run reports.
- ``factory``    -- ``build_engine`` from configuration (import it directly).

Usage example
-------------
::

    from sync_reconciler.sync import ReconciliationEngine, SynchronizationStore
    from sync_reconciler.sync import format_run_report

    store = SynchronizationStore([sync], mappings=[mapping])
    engine = ReconciliationEngine(store, providers={"rest": provider})

    # Test run first to preview changes
    preview = engine.reconcile_all(sync.id, test=True)
    print(format_run_report(preview))

    log = engine.reconcile_all(sync.id)
    print(format_run_report(log))
"""

from .action import SynchronizationAction
from .contracts import ContractStore, FileContractStore, InMemoryContractStore
from .engine import ReconciliationEngine
from .errors import (
    ContractConflictError,
    LockedError,
    MappingError,
    ObjectNotFoundError,
    RateLimitedError,
    ReconcileError,
    RuleAbortRun,
    RuleError,
    SynchronizationNotFoundError,
    TransientError,
)
from .events import EventTriggerAdapter, ObjectEvent
from .mapper import MappingExecutor
from .models import (
    Mapping,
    MutationType,
    ProviderRef,
    Rule,
    RunResult,
    Synchronization,
    SynchronizationContract,
    SynchronizationContractLog,
    SynchronizationLog,
    TargetAction,
)
from .reporter import format_run_report, format_test_run_preview, report_to_json
from .rules import RuleExecutor
from .synchronizations import SynchronizationStore

__all__ = [
    "ContractConflictError",
    "ContractStore",
    "EventTriggerAdapter",
    "FileContractStore",
    "InMemoryContractStore",
    "LockedError",
    "Mapping",
    "MappingError",
    "MappingExecutor",
    "MutationType",
    "ObjectEvent",
    "ObjectNotFoundError",
    "ProviderRef",
    "RateLimitedError",
    "ReconcileError",
    "ReconciliationEngine",
    "Rule",
    "RuleAbortRun",
    "RuleError",
    "RuleExecutor",
    "RunResult",
    "Synchronization",
    "SynchronizationAction",
    "SynchronizationContract",
    "SynchronizationContractLog",
    "SynchronizationLog",
    "SynchronizationNotFoundError",
    "SynchronizationStore",
    "TargetAction",
    "TransientError",
    "format_run_report",
    "format_test_run_preview",
    "report_to_json",
]
