"""Pydantic models for the reconciliation engine.

Defines the core data contracts used across all sync modules:

- ``Synchronization``: a configured pairing of one source and one target.
- ``SynchronizationContract``: idempotency record for one source object.
- ``SynchronizationLog``: summary of one run.
- ``SynchronizationContractLog``: outcome for one object within a run.
- ``Mapping`` and ``Rule``: the transformation pipeline configuration.

All models are frozen (immutable).  The engine produces updated copies with
``model_copy(update=...)`` and hands them to the stores at well-defined
checkpoints.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RuleTiming(str, Enum):
    """Whether a rule runs before or after the mapping/write step."""

    BEFORE = "before"
    AFTER = "after"


class RuleType(str, Enum):
    """Closed set of rule types.  Each has exactly one handler."""

    MAPPING = "mapping"
    ERROR = "error"
    SCRIPT = "script"
    SYNCHRONIZATION = "synchronization"
    AUTHENTICATION = "authentication"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    LOCKING = "locking"
    EXTEND_INPUT = "extend_input"
    EXTEND_EXTERNAL_INPUT = "extend_external_input"
    FETCH_FILE = "fetch_file"
    WRITE_FILE = "write_file"
    FILEPARTS_CREATE = "fileparts_create"
    FILEPART_UPLOAD = "filepart_upload"
    SAVE_OBJECT = "save_object"
    JAVASCRIPT = "javascript"


class FailurePolicy(str, Enum):
    """What a rule failure does to the object (or the run)."""

    CONTINUE = "continue"
    ABORT_OBJECT = "abort-object"
    ABORT_RUN = "abort-run"


class MutationType(str, Enum):
    """Kind of change that triggered a single-object reconciliation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class TargetAction(str, Enum):
    """Action taken on the target for one object."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SKIP = "skip"
    DELETE_FAILED = "delete-failed"


class ReconcileMode(str, Enum):
    FULL_SCAN = "full-scan"
    SINGLE_OBJECT = "single-object"
    FORCED = "forced"


class ObjectState(str, Enum):
    """Per-object reconciliation states."""

    DISCOVERED = "discovered"
    HASHED = "hashed"
    SKIPPED = "skipped"
    RULED_BEFORE = "ruled_before"
    MAPPED = "mapped"
    WRITTEN = "written"
    RULED_AFTER = "ruled_after"
    COMMITTED = "committed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Configuration entities
# ---------------------------------------------------------------------------


class ProviderRef(BaseModel):
    """Opaque reference to a source or target object provider.

    Attributes:
        id: Provider identifier (e.g. a source id or a base URL).
        type: Provider type used to pick an implementation (``rest``).
        config: Provider-specific settings (``location``,
            ``results_position``, ``id_position``, ``headers`` ...).
    """

    id: str
    type: str = "rest"
    config: dict[str, Any] = {}

    model_config = {"frozen": True}


class Mapping(BaseModel):
    """Declarative field mapping.

    Attributes:
        id: Mapping identifier.
        name: Human-readable name.
        mapping: Ordered ``target_path -> source_expression`` pairs.
        unset: Paths removed from the output after everything else.
        cast: ``target_path -> cast`` where cast is a name, a
            comma-separated list of names, or a list of names.
        soft_cast: Paths whose cast failures are recorded without failing
            the object.
        pass_through: Copy unmapped source fields into the output.
    """

    id: str
    name: str = ""
    mapping: dict[str, Any] = {}
    unset: list[str] = []
    cast: dict[str, str | list[str]] = {}
    soft_cast: list[str] = []
    pass_through: bool = False

    model_config = {"frozen": True}


class Rule(BaseModel):
    """A single conditional pre/post-processing step.

    Attributes:
        id: Rule identifier; ties in ``order`` are broken by ascending id.
        timing: ``before`` or ``after`` the mapping/write step.
        type: Rule type, selects the handler.
        action: Limit the rule to one mutation type.  ``None`` applies the
            rule to creates and updates; delete-only rules must say
            ``delete``.
        conditions: JsonLogic-style expression; empty means always.
        configuration: Type-specific parameters, including the
            ``on_failure`` policy.
        order: Ascending execution order.
    """

    id: str
    name: str = ""
    timing: RuleTiming = RuleTiming.BEFORE
    type: RuleType
    action: MutationType | None = None
    conditions: Any = None
    configuration: dict[str, Any] = {}
    order: int = 0

    model_config = {"frozen": True}

    @property
    def on_failure(self) -> FailurePolicy:
        """Failure policy from configuration, default ``abort-object``."""
        raw = self.configuration.get("on_failure", FailurePolicy.ABORT_OBJECT)
        return FailurePolicy(raw)


class Synchronization(BaseModel):
    """A configured pairing of one source and one target.

    Only ``current_page``, ``current_scan_started`` and the watermark fields
    are written by the engine; everything else comes from configuration.
    """

    id: str
    name: str = ""
    description: str = ""
    source: ProviderRef
    target: ProviderRef
    source_target_mapping: str | None = None
    target_source_mapping: str | None = None
    conditions: Any = None
    rules: list[str] = []
    register_id: str | None = None
    schema_id: str | None = None
    current_page: int = Field(default=1, ge=1)
    current_scan_started: datetime | None = None
    source_last_changed: datetime | None = None
    source_last_checked: datetime | None = None
    source_last_synced: datetime | None = None
    target_last_changed: datetime | None = None
    target_last_checked: datetime | None = None
    target_last_synced: datetime | None = None
    version: str = "0.0.0"
    created: datetime | None = None
    updated: datetime | None = None

    model_config = {"frozen": True}

    def progress(self) -> dict[str, Any]:
        """Engine-owned fields, as persisted between runs."""
        return self.model_dump(
            mode="json",
            include={
                "current_page",
                "current_scan_started",
                "source_last_changed",
                "source_last_checked",
                "source_last_synced",
                "target_last_changed",
                "target_last_checked",
                "target_last_synced",
            },
        )


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------


class SynchronizationContract(BaseModel):
    """Idempotency record linking one source object to one target object.

    Attributes:
        origin_hash: Digest of the last-seen source payload.
        target_id: Target identifier; set only after a successful write.
        target_hash: Digest of the last-written mapped payload.
        target_last_action: Last action taken on the target.
        revision: Optimistic-concurrency counter, bumped on every save.
            ``0`` means the contract has never been saved.
    """

    id: str
    synchronization_id: str
    origin_id: str
    origin_hash: str | None = None
    source_last_changed: datetime | None = None
    source_last_checked: datetime | None = None
    source_last_synced: datetime | None = None
    target_id: str | None = None
    target_hash: str | None = None
    target_last_changed: datetime | None = None
    target_last_checked: datetime | None = None
    target_last_synced: datetime | None = None
    target_last_action: TargetAction | None = None
    revision: int = 0
    created: datetime | None = None
    updated: datetime | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------


class RunResult(BaseModel):
    """Aggregated counts for one run.

    Attributes:
        objects_found: Objects pulled from the source.
        pages: Pages fully processed.
        contracts: Ids of the contracts touched (possibly truncated).
        contracts_truncated: ``True`` if ``contracts`` was cut to fit the
            log size cap.
        stopped_reason: Why the run ended before the last page, if it did.
        error: Message of the error that ended the run, if any.
        rate_limit_reset: Reset hint from a rate-limited source.
    """

    objects_found: int = 0
    pages: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    contracts: list[str] = []
    contracts_truncated: bool = False
    stopped_reason: str | None = None
    error: str | None = None
    rate_limit_reset: str | None = None

    model_config = {"frozen": True}

    @property
    def succeeded(self) -> int:
        """Objects that reached a successful terminal state."""
        return self.created + self.updated + self.deleted + self.skipped

    @property
    def completed(self) -> bool:
        return self.stopped_reason is None and self.error is None

    def summary(self) -> str:
        """Format a human-readable summary of the counts."""
        lines = [
            f"  Found:    {self.objects_found}",
            f"  Created:  {self.created}",
            f"  Updated:  {self.updated}",
            f"  Deleted:  {self.deleted}",
            f"  Skipped:  {self.skipped}",
            f"  Failed:   {self.failed}",
        ]
        return "\n".join(lines)


class SynchronizationLog(BaseModel):
    """Summary of one reconciliation run."""

    id: str
    synchronization_id: str
    message: str = ""
    result: RunResult = Field(default_factory=RunResult)
    execution_time_ms: int = 0
    test: bool = False
    force: bool = False
    created: datetime
    expires: datetime
    size: int = 0

    model_config = {"frozen": True}


class SynchronizationContractLog(BaseModel):
    """Outcome of reconciling one object.

    ``source``/``target`` snapshots are size-capped by the log aggregator.
    ``synchronization_log_id`` is ``None`` for single-object reconciliations.
    """

    id: str
    synchronization_id: str
    synchronization_contract_id: str | None = None
    synchronization_log_id: str | None = None
    origin_id: str | None = None
    state: ObjectState
    target_result: TargetAction | None = None
    source: Any = None
    target: Any = None
    message: str | None = None
    test: bool = False
    force: bool = False
    created: datetime
    expires: datetime
    size: int = 0

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return self.state != ObjectState.FAILED
