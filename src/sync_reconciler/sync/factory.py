"""Assemble a ``ReconciliationEngine`` from configuration.

Kept apart from the package ``__init__`` because it depends on
``config_schema``, which itself imports the sync models.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping as MappingType
from pathlib import Path
from typing import TYPE_CHECKING

from sync_reconciler.sync.contracts import (
    ContractStore,
    FileContractStore,
    InMemoryContractStore,
)
from sync_reconciler.sync.engine import ReconciliationEngine
from sync_reconciler.sync.expressions import JsonLogicEvaluator, ScriptEvaluator
from sync_reconciler.sync.locks import LockManager
from sync_reconciler.sync.logs import FileLogStore, InMemoryLogStore, LogStore
from sync_reconciler.sync.mapper import MappingExecutor
from sync_reconciler.sync.providers import (
    AuthenticationProvider,
    ObjectProvider,
    create_provider,
)
from sync_reconciler.sync.rules import Collaborator, RuleExecutor
from sync_reconciler.sync.synchronizations import SynchronizationStore

if TYPE_CHECKING:
    from sync_reconciler.config import Config
    from sync_reconciler.config_schema import UnifiedConfig

logger = logging.getLogger(__name__)


def build_engine(
    unified: UnifiedConfig,
    config: Config,
    providers: MappingType[str, ObjectProvider] | None = None,
    auth: AuthenticationProvider | None = None,
    collaborators: dict[str, Collaborator] | None = None,
    script_evaluator: ScriptEvaluator | None = None,
) -> ReconciliationEngine:
    """Build an engine for the synchronizations declared in *unified*.

    Every provider type referenced by a synchronization gets a provider
    from ``create_provider`` unless *providers* already supplies one for
    the ref's id or type.

    Args:
        unified: Declared synchronizations, mappings, rules and retention.
        config: Resolved runtime settings.
        providers: Pre-built providers keyed by provider id or type.
        auth: Credential source for REST providers.
        collaborators: Callables for collaborator-backed rule types.
        script_evaluator: Runs ``script`` rules.

    Raises:
        ValueError: If a synchronization uses an unknown provider type.
    """
    state_dir = Path(config.state_dir) if config.state_dir else None

    synchronizations = SynchronizationStore(
        unified.synchronizations,
        unified.mappings,
        unified.rules,
        state_dir=state_dir,
    )

    resolved: dict[str, ObjectProvider] = dict(providers or {})
    for sync in unified.synchronizations:
        for ref in (sync.source, sync.target):
            if ref.id in resolved or ref.type in resolved:
                continue
            resolved[ref.type] = create_provider(
                ref.type, auth=auth, page_size=config.page_size
            )

    contracts: ContractStore
    logs: LogStore
    if state_dir is not None:
        contracts = FileContractStore(state_dir)
        logs = FileLogStore(state_dir)
    else:
        contracts = InMemoryContractStore()
        logs = InMemoryLogStore()

    evaluator = JsonLogicEvaluator()
    mapper = MappingExecutor(evaluator)
    rule_executor = RuleExecutor(
        evaluator=evaluator,
        mapper=mapper,
        mapping_resolver=synchronizations.mapping,
        script_evaluator=script_evaluator,
        collaborators=collaborators,
        lock_manager=LockManager(ttl=config.lock_ttl),
    )

    logger.info(
        "Engine ready: %d synchronizations, state in %s",
        len(unified.synchronizations),
        state_dir or "memory",
    )
    return ReconciliationEngine(
        synchronizations,
        resolved,
        contracts=contracts,
        logs=logs,
        evaluator=evaluator,
        rule_executor=rule_executor,
        retention=unified.retention,
        max_workers=config.max_workers,
        execution_time=config.execution_time,
    )
