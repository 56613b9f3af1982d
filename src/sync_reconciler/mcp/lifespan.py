"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError

from ..config import load_config
from ..config_loader import (
    discover_config_files,
    load_hierarchical_config,
)
from ..config_schema import build_config
from ..core.async_utils import init_semaphore, run_sync
from ..sync.factory import build_engine

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config file if present (synchronizations, mappings, rules and fallbacks)
    - Merge engine settings via load_config(): CLI > env vars > .env > YAML > defaults
    - Build the ReconciliationEngine
    - Reap expired logs left over from earlier runs

    On shutdown:
    - Log shutdown message

    Args:
        config_overrides: Optional dict with config values from CLI
            (state_dir, max_workers, execution_time, debug)

    Yields:
        Dict with 'engine' key containing the initialized ReconciliationEngine

    Raises:
        RuntimeError: If configuration is invalid.
    """
    logger.info("MCP server starting...")
    _stderr_print("Sync Reconciler MCP Server starting...")

    try:
        # 1. Load .env early (before YAML, so ${VAR} interpolation can use .env values)
        load_dotenv()

        # 2. Load YAML config if present
        config_files = discover_config_files()
        sources = []
        raw = load_hierarchical_config() if config_files else {}
        unified = build_config(raw)
        if config_files:
            sources.append(f"config file: {config_files[0]}")

        yaml_fallbacks = {
            **unified.engine.model_dump(),
            "state_dir": unified.store.state_dir,
        }

        # 3. Single call to load_config with all sources merged
        overrides = config_overrides or {}
        config = load_config(
            state_dir=overrides.get("state_dir"),
            max_workers=overrides.get("max_workers"),
            execution_time=overrides.get("execution_time"),
            debug=overrides.get("debug", False),
            yaml_fallbacks=yaml_fallbacks,
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
    except (ValueError, ValidationError) as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        raise RuntimeError(f"Configuration error: {e}") from e

    try:
        engine = build_engine(unified, config)
    except ValueError as e:
        logger.error("Failed to build engine: %s", e)
        _stderr_print(f"ERROR: {e}")
        raise RuntimeError(f"Failed to build engine: {e}") from e

    _stderr_print(f"  Synchronizations: {len(unified.synchronizations)}")
    _stderr_print(f"  State directory: {config.state_dir or '(in memory)'}")

    # Reap logs that expired while the server was down
    await run_sync(engine.logs.set_expiry, unified.retention)
    removed = await run_sync(engine.logs.clear_expired)
    if removed:
        _stderr_print(f"  Removed {removed} expired log entries")

    init_semaphore(1)
    _stderr_print("Server ready. Waiting for MCP client connection...")

    # Server is ready - yield engine for caller to install
    yield {"engine": engine}

    # Shutdown
    logger.info("MCP server shutting down")
    _stderr_print("Sync Reconciler MCP Server shutting down.")
