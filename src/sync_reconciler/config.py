"""Runtime configuration for the reconciliation engine.

Reads engine settings from CLI args, environment variables, .env files,
and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    SYNC_STATE_DIR: Directory for contracts, progress and logs
        (optional, default: .sync_reconciler/state; empty keeps state in memory)
    SYNC_MAX_WORKERS: Objects reconciled in parallel per page (optional, default: 4)
    SYNC_EXECUTION_TIME: Run deadline in seconds (optional, default: 3600)
    SYNC_PAGE_SIZE: Page size requested from REST sources (optional, default: 100)
    SYNC_DEBUG: Enable debug logging (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".sync_reconciler/state"


@dataclass
class Config:
    state_dir: str | None = DEFAULT_STATE_DIR
    max_workers: int = 4
    execution_time: float = 3600.0
    page_size: int = 100
    lock_ttl: float = 300.0
    debug: bool = False


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If a numeric setting is out of range.
    """
    if config.state_dir is not None:
        config.state_dir = config.state_dir.strip() or None

    if not (1 <= config.max_workers <= 64):
        raise ValueError(
            f"Invalid max_workers {config.max_workers}: must be between 1 and 64"
        )
    if config.execution_time <= 0:
        raise ValueError(
            f"Invalid execution_time {config.execution_time}: must be positive"
        )
    if not (1 <= config.page_size <= 10000):
        raise ValueError(
            f"Invalid page_size {config.page_size}: must be between 1 and 10000"
        )
    if config.lock_ttl <= 0:
        raise ValueError(f"Invalid lock_ttl {config.lock_ttl}: must be positive")

    if config.state_dir is None:
        logger.warning(
            "No state_dir configured: contracts and progress are kept in memory only"
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_number_env(key: str, kind: type, low: float, high: float | None = None):
    raw = os.getenv(key)
    if raw is None:
        return None
    bounds = f"between {low} and {high}" if high is not None else f"at least {low}"
    try:
        value = kind(raw)
    except ValueError:
        raise ValueError(f"Invalid {key} '{raw}': must be a number {bounds}") from None
    if value < low or (high is not None and value > high):
        raise ValueError(f"Invalid {key} '{raw}': must be a number {bounds}")
    return value


def load_config(
    state_dir: str | None = None,
    max_workers: int | None = None,
    execution_time: float | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        state_dir: Override the state directory.
        max_workers: Override the worker pool size.
        execution_time: Override the run deadline in seconds.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict of values from the YAML ``engine`` and
            ``store`` sections.  Used when CLI arg and env var are unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If an env var or YAML value is malformed or out of range.
    """
    fb = yaml_fallbacks or {}

    # --- State dir: CLI > env > YAML > default ---

    if state_dir is not None:
        final_state_dir: str | None = state_dir
    elif os.getenv("SYNC_STATE_DIR") is not None:
        final_state_dir = os.getenv("SYNC_STATE_DIR")
    elif "state_dir" in fb:
        final_state_dir = fb["state_dir"]
    else:
        final_state_dir = DEFAULT_STATE_DIR

    # --- Numeric fields: CLI > env > YAML > default ---

    final_workers = max_workers or _get_number_env("SYNC_MAX_WORKERS", int, 1, 64)
    if final_workers is None:
        final_workers = int(fb.get("max_workers", 4))

    final_time = execution_time or _get_number_env(
        "SYNC_EXECUTION_TIME", float, 1
    )
    if final_time is None:
        final_time = float(fb.get("execution_time", 3600.0))

    final_page_size = _get_number_env("SYNC_PAGE_SIZE", int, 1, 10000)
    if final_page_size is None:
        final_page_size = int(fb.get("page_size", 100))

    # --- Boolean fields: CLI > env > YAML > default ---

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("SYNC_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    config = Config(
        state_dir=final_state_dir,
        max_workers=final_workers,
        execution_time=final_time,
        page_size=final_page_size,
        lock_ttl=float(fb.get("lock_ttl", 300.0)),
        debug=final_debug,
    )

    validate_config(config)

    return config
