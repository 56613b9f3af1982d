"""Ordered, conditional pre/post-processing rules.

``RuleExecutor.run_rules()`` selects the rules for one timing (``before`` or
``after``) and mutation type, sorts them by ``(order, id)`` and runs them
one after the other against a mutable ``RuleContext``.  Rules only ever
change that context; persistence stays with the engine.

Every ``RuleType`` has exactly one handler in the dispatch table.  The table
is checked at construction, so adding a rule type without a handler fails
immediately instead of silently doing nothing.

Handler families:

* ``mapping`` -- re-maps the current payload with another mapping.
* ``locking`` -- takes a per-object lease (released by the engine).
* ``error`` -- fails with a configured message and code.
* ``script``/``javascript`` -- hand the context to the script evaluator.
* everything else -- delegated to a named collaborator callable.

A failing rule is handled by its ``on_failure`` policy: ``continue`` logs a
warning, ``abort-object`` stops this object, ``abort-run`` raises
``RuleAbortRun``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from sync_reconciler.sync.errors import (
    ReconcileError,
    RuleAbortRun,
    RuleError,
)
from sync_reconciler.sync.expressions import (
    ExpressionEvaluator,
    JsonLogicEvaluator,
    ScriptEvaluator,
    check_condition,
)
from sync_reconciler.sync.locks import Lease, LockManager
from sync_reconciler.sync.mapper import MappingExecutor
from sync_reconciler.sync.models import (
    FailurePolicy,
    Mapping,
    MutationType,
    Rule,
    RuleTiming,
    RuleType,
    Synchronization,
)
from sync_reconciler.sync.paths import set_path

logger = logging.getLogger(__name__)

# Collaborators receive the rule and the context and may return a value
# that is stored or merged according to the rule configuration.
Collaborator = Callable[[Rule, "RuleContext"], Any]
MappingResolver = Callable[[str], Mapping]

# Rule types whose work is done by an external collaborator.
COLLABORATOR_TYPES = frozenset(
    {
        RuleType.SYNCHRONIZATION,
        RuleType.AUTHENTICATION,
        RuleType.DOWNLOAD,
        RuleType.UPLOAD,
        RuleType.EXTEND_INPUT,
        RuleType.EXTEND_EXTERNAL_INPUT,
        RuleType.FETCH_FILE,
        RuleType.WRITE_FILE,
        RuleType.FILEPARTS_CREATE,
        RuleType.FILEPART_UPLOAD,
        RuleType.SAVE_OBJECT,
    }
)


@dataclass
class RuleContext:
    """Per-object state that rules may read and change.

    Attributes:
        synchronization: The synchronization being reconciled.
        origin_id: Source identifier of the object.
        action: Mutation being performed (``create``/``update``/``delete``).
        source: Source payload; ``before`` rules operate on it.
        target: Mapped payload; ``after`` rules operate on it.
        target_id: Target identifier, once known.
        extra: Values produced by collaborators, keyed by rule id.
        locks: Leases taken by ``locking`` rules.
        warnings: Messages from rules that failed with ``continue``.
    """

    synchronization: Synchronization
    origin_id: str
    action: MutationType = MutationType.CREATE
    source: Any = None
    target: Any = None
    target_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    locks: list[Lease] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    run_id: str | None = None

    def data(self) -> dict[str, Any]:
        """The view of this context that conditions and scripts see."""
        return {
            "source": self.source,
            "target": self.target,
            "target_id": self.target_id,
            "origin_id": self.origin_id,
            "action": self.action.value,
            "extra": self.extra,
            "synchronization": self.synchronization.id,
        }


@dataclass(frozen=True)
class RuleRunResult:
    """Outcome of one ``run_rules`` call; ``error`` is set on abort-object."""

    context: RuleContext
    error: RuleError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RuleExecutor:
    """Run rules against a ``RuleContext``.

    Args:
        evaluator: Evaluates rule conditions.
        mapper: Used by ``mapping`` rules.
        mapping_resolver: Looks up a ``Mapping`` by id for ``mapping`` rules.
        script_evaluator: Runs ``script``/``javascript`` rules.
        collaborators: Callables keyed by name.  A rule picks one via its
            ``collaborator`` configuration key, falling back to its type.
        lock_manager: Lease table for ``locking`` rules.
    """

    def __init__(
        self,
        evaluator: ExpressionEvaluator | None = None,
        mapper: MappingExecutor | None = None,
        mapping_resolver: MappingResolver | None = None,
        script_evaluator: ScriptEvaluator | None = None,
        collaborators: dict[str, Collaborator] | None = None,
        lock_manager: LockManager | None = None,
    ) -> None:
        self.evaluator = evaluator or JsonLogicEvaluator()
        self.mapper = mapper or MappingExecutor(self.evaluator)
        self.mapping_resolver = mapping_resolver
        self.script_evaluator = script_evaluator
        self.collaborators = dict(collaborators or {})
        self.lock_manager = lock_manager or LockManager()

        self._handlers: dict[RuleType, Callable[[Rule, RuleContext], None]] = {
            RuleType.MAPPING: self._run_mapping,
            RuleType.ERROR: self._run_error,
            RuleType.SCRIPT: self._run_script,
            RuleType.JAVASCRIPT: self._run_script,
            RuleType.LOCKING: self._run_locking,
        }
        for rule_type in COLLABORATOR_TYPES:
            self._handlers[rule_type] = self._run_collaborator

        missing = [t.value for t in RuleType if t not in self._handlers]
        if missing:
            raise ValueError(f"No rule handler for: {', '.join(missing)}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run_rules(
        self,
        rules: Iterable[Rule],
        timing: RuleTiming,
        context: RuleContext,
    ) -> RuleRunResult:
        """Run the rules matching *timing* and the context's action.

        Raises:
            RuleAbortRun: If a rule with the ``abort-run`` policy fails.
        """
        for rule in select_rules(rules, timing, context.action):
            if not check_condition(self.evaluator, rule.conditions, context.data()):
                logger.debug("Rule %s skipped: condition not met", rule.id)
                continue

            try:
                self._handlers[rule.type](rule, context)
            except ReconcileError as exc:
                error = self._apply_policy(rule, exc, context)
                if error is not None:
                    return RuleRunResult(context=context, error=error)

        return RuleRunResult(context=context)

    def release_locks(self, context: RuleContext) -> None:
        """Release every lease taken for *context*."""
        while context.locks:
            self.lock_manager.release(context.locks.pop())

    # ------------------------------------------------------------------
    # Failure policy
    # ------------------------------------------------------------------

    def _apply_policy(
        self, rule: Rule, exc: ReconcileError, context: RuleContext
    ) -> RuleError | None:
        policy = rule.on_failure
        code = getattr(exc, "code", None)
        message = f"Rule '{rule.name or rule.id}' failed: {exc}"

        if policy == FailurePolicy.CONTINUE:
            logger.warning("%s (continuing)", message)
            context.warnings.append(message)
            return None
        if policy == FailurePolicy.ABORT_RUN:
            logger.error("%s (aborting run)", message)
            raise RuleAbortRun(message, rule_id=rule.id, code=code) from exc

        logger.info("%s (aborting object %s)", message, context.origin_id)
        error = RuleError(
            message, rule_id=rule.id, policy=policy.value, code=code
        )
        error.__cause__ = exc
        return error

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _payload(self, rule: Rule, context: RuleContext) -> Any:
        return context.source if rule.timing == RuleTiming.BEFORE else context.target

    def _set_payload(self, rule: Rule, context: RuleContext, value: Any) -> None:
        if rule.timing == RuleTiming.BEFORE:
            context.source = value
        else:
            context.target = value

    def _run_mapping(self, rule: Rule, context: RuleContext) -> None:
        mapping_id = rule.configuration.get("mapping")
        if not mapping_id or self.mapping_resolver is None:
            raise RuleError(
                f"Mapping rule '{rule.id}' has no resolvable mapping",
                rule_id=rule.id,
            )
        mapping = self.mapping_resolver(mapping_id)
        outcome = self.mapper.apply(mapping, self._payload(rule, context))
        self._set_payload(rule, context, outcome.output)

    def _run_error(self, rule: Rule, context: RuleContext) -> None:
        config = rule.configuration.get("error", rule.configuration)
        raise RuleError(
            config.get("message", f"Rule '{rule.id}' raised an error"),
            rule_id=rule.id,
            code=config.get("code"),
        )

    def _run_script(self, rule: Rule, context: RuleContext) -> None:
        if self.script_evaluator is None:
            raise RuleError(
                "No script evaluator configured", rule_id=rule.id
            )
        script = rule.configuration.get("script", "")
        result = self.script_evaluator.run(script, context.data())
        if not isinstance(result, dict):
            raise RuleError(
                f"Script rule '{rule.id}' did not return an object",
                rule_id=rule.id,
            )
        if "source" in result:
            context.source = result["source"]
        if "target" in result:
            context.target = result["target"]
        if "extra" in result and isinstance(result["extra"], dict):
            context.extra.update(result["extra"])

    def _run_locking(self, rule: Rule, context: RuleContext) -> None:
        ttl = rule.configuration.get("ttl")
        # LockedError propagates as is; the engine retries locked objects.
        lease = self.lock_manager.acquire(
            context.synchronization.id,
            context.origin_id,
            ttl=float(ttl) if ttl is not None else None,
        )
        context.locks.append(lease)

    def _run_collaborator(self, rule: Rule, context: RuleContext) -> None:
        name = rule.configuration.get("collaborator", rule.type.value)
        collaborator = self.collaborators.get(name)
        if collaborator is None:
            raise RuleError(
                f"No collaborator registered for '{name}'", rule_id=rule.id
            )

        result = collaborator(rule, context)
        if result is None:
            return

        result_path = rule.configuration.get("result_path")
        payload = self._payload(rule, context)
        if result_path and isinstance(payload, dict):
            set_path(payload, result_path, result)
        elif rule.configuration.get("merge") and isinstance(result, dict):
            merged = dict(payload) if isinstance(payload, dict) else {}
            merged.update(result)
            self._set_payload(rule, context, merged)
        else:
            context.extra[rule.id] = result


def select_rules(
    rules: Iterable[Rule], timing: RuleTiming, action: MutationType
) -> list[Rule]:
    """Rules for *timing* that apply to *action*, sorted by ``(order, id)``.

    Rules without an ``action`` apply to creates and updates only.
    """
    selected = [
        rule
        for rule in rules
        if rule.timing == timing
        and (
            rule.action == action
            if rule.action is not None
            else action != MutationType.DELETE
        )
    ]
    return sorted(selected, key=lambda rule: (rule.order, rule.id))
