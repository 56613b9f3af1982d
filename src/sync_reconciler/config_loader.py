"""
Hierarchical configuration loader for sync_reconciler.

Provides convention-based config file discovery, YAML !include support,
env var interpolation, and hierarchical merge with "project wins" semantics.

Usage:
    from sync_reconciler.config_loader import load_hierarchical_config

    config = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# Matches ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` patterns with env values.

    * ``${VAR}`` is replaced with ``os.environ.get(VAR, "")``.
    * ``${VAR:-default}`` uses *default* when VAR is unset or empty.
    * Literal ``${`` with no closing ``}`` is left untouched.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)  # None when no :- clause
        env_val = os.environ.get(var_name)
        if env_val is not None and env_val != "":
            return env_val
        if default is not None:
            return default
        return ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    """Walk a nested dict/list and interpolate env vars in all strings."""
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# 2. YAML !include support (dedicated SafeLoader subclass)
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """YAML SafeLoader subclass with ``!include`` support.

    Uses a dedicated subclass so the global ``yaml.SafeLoader`` is never
    modified.  Tracks an *include stack* per-load to detect circular includes.
    """


def _include_constructor(
    loader: ConfigLoader, node: yaml.ScalarNode
) -> Any:
    """Handle ``!include path/to/file.yml`` directives."""
    include_path_str: str = loader.construct_scalar(node)

    # Resolve relative to the file that contains the !include
    if os.path.isabs(include_path_str):
        include_path = Path(include_path_str)
    else:
        # loader.name is the path of the file being parsed
        parent_dir = Path(loader.name).resolve().parent
        include_path = parent_dir / include_path_str

    include_path = include_path.resolve()

    # Circular include detection
    include_stack: list[Path] = getattr(loader, "_include_stack", [])
    if include_path in include_stack:
        chain = (
            " -> ".join(str(p) for p in include_stack)
            + f" -> {include_path}"
        )
        raise ValueError(f"Circular include detected: {chain}")

    if not include_path.exists():
        source_file = Path(loader.name).resolve()
        raise FileNotFoundError(
            f"Include file not found: {include_path} (referenced from {source_file})"
        )

    new_stack = include_stack + [include_path]
    return _load_yaml_with_includes(
        include_path, _include_stack=new_stack
    )


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml_with_includes(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    """Load a YAML file using the ``ConfigLoader`` (with ``!include``)."""
    path = path.resolve()
    if _include_stack is None:
        _include_stack = [path]

    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# 3. Convention-based file discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config file paths in precedence order (highest first).

    Search order:
        1. ``SYNC_RECONCILER_CONFIG`` env var (explicit single path).
        2. ``.sync_reconciler/config.yml`` in CWD (project-level)
        3. ``.sync_reconciler/config.yaml`` in CWD (alternate extension)
        4. ``~/.config/sync_reconciler/config.yml`` (XDG global)

    Only paths that exist on disk are returned.
    """
    candidates: list[Path] = []

    # 1. Env var override
    env_path = os.environ.get("SYNC_RECONCILER_CONFIG")
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    # 2-3. Project-level (CWD)
    cwd = Path.cwd()
    candidates.append(cwd / ".sync_reconciler" / "config.yml")
    candidates.append(cwd / ".sync_reconciler" / "config.yaml")

    # 4. XDG global
    candidates.append(
        Path.home() / ".config" / "sync_reconciler" / "config.yml"
    )

    return [p for p in candidates if p.exists()]


# ---------------------------------------------------------------------------
# 3a. Config bootstrapping
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# sync-reconciler configuration
#
# Engine settings can also be set via environment variables:
#   SYNC_STATE_DIR, SYNC_MAX_WORKERS, SYNC_EXECUTION_TIME, SYNC_DEBUG
#
# engine:
#   max_workers: 4
#   execution_time: 3600
#   page_size: 100
#   lock_ttl: 300
#
# store:
#   state_dir: .sync_reconciler/state
#
# retention:
#   contract_log_ttl_days: 7
#   sync_log_ttl_days: 30
#   snapshot_max_bytes: 4096
#
# mappings:
#   - id: person-to-contact
#     mapping:
#       name: fullName
#       email: contact.email
#     cast:
#       age: integer
#
# synchronizations:
#   - id: people
#     source:
#       id: crm
#       config:
#         location: https://crm.example.org/api
#         endpoint: /people
#         headers: {Authorization: "Bearer ${CRM_TOKEN}"}
#     target:
#       id: directory
#       config:
#         location: https://directory.example.org/api
#         endpoint: /contacts
#     source_target_mapping: person-to-contact
#
# logging:
#   level: INFO
#   file: null
"""


def resolve_config_path() -> Path:
    """Return the single config file path that should be used.

    If config files already exist (per ``discover_config_files()``), return
    the highest-precedence one (first in the list).

    If no config files exist, return the default project-level path:
    ``CWD / .sync_reconciler / config.yml``.

    This does NOT create the file -- use ``ensure_config()`` for that.

    Returns:
        Path to the active (or default) config file.
    """
    existing = discover_config_files()
    if existing:
        return existing[0]
    return Path.cwd() / ".sync_reconciler" / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Ensure a config file exists, creating directory and starter file if needed.

    If a config file already exists (per ``discover_config_files()``),
    return its path without modification.

    If no config file exists, create the directory and write a starter
    config.yml with commented-out sections as a template.

    Args:
        target: Explicit path to create. If ``None``, uses
            ``resolve_config_path()`` (which defaults to
            ``CWD / .sync_reconciler / config.yml``).

    Returns:
        Path to the config file (existing or newly created).
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or resolve_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)

    return config_path


# ---------------------------------------------------------------------------
# 4. Hierarchical merge
# ---------------------------------------------------------------------------


# Sections holding lists of declared objects; these merge by ``id``.
MERGE_BY_ID_SECTIONS = ("mappings", "rules", "synchronizations")


def merge_config(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge *overlay* into *base* in place and return *base*.

    Settings sections are replaced wholesale.  The object lists in
    ``MERGE_BY_ID_SECTIONS`` are combined by ``id``: an overlay entry
    replaces the base entry with the same id, new ids are appended.
    """
    for key, value in overlay.items():
        current = base.get(key)
        if (
            key in MERGE_BY_ID_SECTIONS
            and isinstance(current, list)
            and isinstance(value, list)
        ):
            by_id = {
                item.get("id"): item for item in current if isinstance(item, dict)
            }
            for item in value:
                if isinstance(item, dict):
                    by_id[item.get("id")] = item
            base[key] = list(by_id.values())
        else:
            base[key] = value
    return base


def load_hierarchical_config() -> dict[str, Any]:
    """Load and merge all discovered config files.

    Merge strategy ("project wins"):
        Files are loaded from lowest precedence to highest.  Each file's
        settings sections **replace** (not deep-merge) those from earlier
        files; declared mappings, rules and synchronizations are merged by
        id (see ``merge_config``).

    After merging, env var interpolation is applied to all string values.

    Returns an empty dict when no config files exist (zero-config).
    """
    paths = discover_config_files()

    if not paths:
        logger.debug(
            "No config files found, using zero-config defaults"
        )
        return {}

    # Merge from lowest precedence (last) to highest (first)
    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = _load_yaml_with_includes(path)
        except Exception:
            logger.exception("Failed to load config file %s", path)
            raise

        if isinstance(data, dict):
            merge_config(merged, data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    # Apply env var interpolation after merge
    merged = _interpolate_recursive(merged)  # type: ignore[assignment]

    return merged
