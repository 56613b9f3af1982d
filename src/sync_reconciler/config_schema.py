"""Unified configuration schema for sync_reconciler.

Defines Pydantic models for the unified config structure with dedicated
sections for the engine, persisted state, log retention and logging, plus
the declared mappings, rules and synchronizations.  Includes an adapter
function producing the runtime ``Config`` dataclass.

Usage:
    from sync_reconciler.config_schema import (
        UnifiedConfig, build_config, to_runtime_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    runtime = to_runtime_config(unified, cli_overrides={"debug": True})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, model_validator

from .sync.models import Mapping, Rule, Synchronization

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class EngineConfig(BaseModel):
    """Reconciliation loop settings."""

    max_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Objects reconciled in parallel within one page (1-64)",
    )
    execution_time: float = Field(
        default=3600.0,
        gt=0,
        description="Run deadline in seconds",
    )
    page_size: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Default page size requested from REST sources",
    )
    lock_ttl: float = Field(
        default=300.0,
        gt=0,
        description="Lease duration for the locking rule, in seconds",
    )

    model_config = {"frozen": True}


class LogRetentionConfig(BaseModel):
    """Expiry and size caps for run and contract logs."""

    contract_log_ttl_days: int = Field(default=7, ge=1)
    sync_log_ttl_days: int = Field(default=30, ge=1)
    snapshot_max_bytes: int = Field(
        default=4096,
        ge=256,
        description="Source/target snapshots above this size are truncated",
    )
    log_max_bytes: int = Field(
        default=65536,
        ge=1024,
        description="Run logs above this size drop their contract id list",
    )

    model_config = {"frozen": True}


class StoreConfig(BaseModel):
    """Where contracts, progress and logs are persisted.

    ``state_dir`` of ``None`` keeps everything in memory.
    """

    state_dir: str | None = Field(
        default=".sync_reconciler/state",
        description="Directory for contract, progress and log files",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.  Synchronizations
    must reference mappings that are declared.
    """

    engine: EngineConfig = Field(default_factory=EngineConfig)
    retention: LogRetentionConfig = Field(default_factory=LogRetentionConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    mappings: list[Mapping] = Field(default_factory=list)
    rules: list[Rule] = Field(default_factory=list)
    synchronizations: list[Synchronization] = Field(default_factory=list)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_references(self) -> UnifiedConfig:
        mapping_ids = {mapping.id for mapping in self.mappings}
        for sync in self.synchronizations:
            for ref in (sync.source_target_mapping, sync.target_source_mapping):
                if ref is not None and ref not in mapping_ids:
                    raise ValueError(
                        f"Synchronization '{sync.id}' references unknown "
                        f"mapping '{ref}'"
                    )
        return self


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> runtime Config dataclass
# ---------------------------------------------------------------------------


def to_runtime_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Convert a ``UnifiedConfig`` into the runtime ``Config`` dataclass,
    applying CLI overrides on top.

    The precedence applied here is:
        CLI override > unified config value

    CLI overrides dict keys: state_dir, max_workers, execution_time, debug.

    Args:
        unified: The unified config produced by ``build_config()``.
        cli_overrides: Optional dict of CLI argument values.

    Returns:
        ``Config`` dataclass instance (NOT validated; caller should run
        ``validate_config()`` separately if needed).
    """
    # Import here to avoid circular imports (config.py imports config_schema)
    from .config import Config

    overrides = cli_overrides or {}

    return Config(
        state_dir=overrides.get("state_dir") or unified.store.state_dir,
        max_workers=overrides.get("max_workers") or unified.engine.max_workers,
        execution_time=overrides.get("execution_time")
        or unified.engine.execution_time,
        page_size=unified.engine.page_size,
        lock_ttl=unified.engine.lock_ttl,
        debug=overrides.get("debug", False),
    )
