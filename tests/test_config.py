"""Tests for sync_reconciler.config: env-var config loading and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models). This tests the runtime
settings path: validate_config() and load_config().
"""

import logging

import pytest

from sync_reconciler.config import (
    DEFAULT_STATE_DIR,
    Config,
    load_config,
    validate_config,
)

ENV_VARS = (
    "SYNC_STATE_DIR",
    "SYNC_MAX_WORKERS",
    "SYNC_EXECUTION_TIME",
    "SYNC_PAGE_SIZE",
    "SYNC_DEBUG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_VARS:
        monkeypatch.delenv(key, raising=False)


# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config() range checks."""

    def test_defaults_are_valid(self):
        validate_config(Config())

    def test_blank_state_dir_means_memory(self, caplog):
        config = Config(state_dir="   ")
        with caplog.at_level(logging.WARNING, logger="sync_reconciler.config"):
            validate_config(config)
        assert config.state_dir is None
        assert "kept in memory" in caplog.text

    def test_state_dir_stripped(self):
        config = Config(state_dir="  /var/lib/sync  ")
        validate_config(config)
        assert config.state_dir == "/var/lib/sync"

    @pytest.mark.parametrize("workers", [0, -1, 65])
    def test_max_workers_out_of_range(self, workers):
        with pytest.raises(ValueError, match="max_workers"):
            validate_config(Config(max_workers=workers))

    @pytest.mark.parametrize("workers", [1, 64])
    def test_max_workers_bounds(self, workers):
        validate_config(Config(max_workers=workers))

    def test_execution_time_must_be_positive(self):
        with pytest.raises(ValueError, match="execution_time"):
            validate_config(Config(execution_time=0))

    def test_page_size_out_of_range(self):
        with pytest.raises(ValueError, match="page_size"):
            validate_config(Config(page_size=10001))

    def test_lock_ttl_must_be_positive(self):
        with pytest.raises(ValueError, match="lock_ttl"):
            validate_config(Config(lock_ttl=-5))


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config(): env var loading, CLI overrides, parsing."""

    def test_defaults(self):
        config = load_config()
        assert config.state_dir == DEFAULT_STATE_DIR
        assert config.max_workers == 4
        assert config.execution_time == 3600.0
        assert config.page_size == 100
        assert config.debug is False

    def test_load_from_env_vars(self, monkeypatch):
        monkeypatch.setenv("SYNC_STATE_DIR", "/tmp/state")
        monkeypatch.setenv("SYNC_MAX_WORKERS", "8")
        monkeypatch.setenv("SYNC_EXECUTION_TIME", "120")
        monkeypatch.setenv("SYNC_PAGE_SIZE", "50")

        config = load_config()

        assert config.state_dir == "/tmp/state"
        assert config.max_workers == 8
        assert config.execution_time == 120.0
        assert config.page_size == 50

    def test_empty_state_dir_env_means_memory(self, monkeypatch):
        monkeypatch.setenv("SYNC_STATE_DIR", "")
        assert load_config().state_dir is None

    def test_cli_args_override_env(self, monkeypatch):
        monkeypatch.setenv("SYNC_STATE_DIR", "/env")
        monkeypatch.setenv("SYNC_MAX_WORKERS", "8")

        config = load_config(state_dir="/cli", max_workers=2, execution_time=10)

        assert config.state_dir == "/cli"
        assert config.max_workers == 2
        assert config.execution_time == 10

    def test_max_workers_non_numeric(self, monkeypatch):
        monkeypatch.setenv("SYNC_MAX_WORKERS", "many")
        with pytest.raises(ValueError, match="SYNC_MAX_WORKERS 'many'"):
            load_config()

    @pytest.mark.parametrize("value", ["0", "65"])
    def test_max_workers_out_of_range(self, monkeypatch, value):
        monkeypatch.setenv("SYNC_MAX_WORKERS", value)
        with pytest.raises(ValueError, match="between 1 and 64"):
            load_config()

    def test_execution_time_too_small(self, monkeypatch):
        monkeypatch.setenv("SYNC_EXECUTION_TIME", "0.5")
        with pytest.raises(ValueError, match="at least 1"):
            load_config()

    @pytest.mark.parametrize("value", ["true", "1", "yes", "on", "TRUE"])
    def test_debug_truthy_values(self, monkeypatch, value):
        monkeypatch.setenv("SYNC_DEBUG", value)
        assert load_config().debug is True

    @pytest.mark.parametrize("value", ["false", "0", "no", "off"])
    def test_debug_falsy_values(self, monkeypatch, value):
        monkeypatch.setenv("SYNC_DEBUG", value)
        assert load_config().debug is False

    def test_cli_debug_overrides_env(self, monkeypatch):
        monkeypatch.setenv("SYNC_DEBUG", "false")
        assert load_config(debug=True).debug is True


class TestLoadConfigWithYamlFallbacks:
    """YAML values are used only when neither CLI nor env supply one."""

    def test_yaml_fallback_used_when_no_env_or_cli(self):
        config = load_config(
            yaml_fallbacks={
                "state_dir": "/yaml",
                "max_workers": 6,
                "execution_time": 90,
                "page_size": 25,
                "lock_ttl": 30,
            }
        )
        assert config.state_dir == "/yaml"
        assert config.max_workers == 6
        assert config.execution_time == 90.0
        assert config.page_size == 25
        assert config.lock_ttl == 30.0

    def test_env_var_overrides_yaml_fallback(self, monkeypatch):
        monkeypatch.setenv("SYNC_MAX_WORKERS", "3")
        config = load_config(yaml_fallbacks={"max_workers": 6})
        assert config.max_workers == 3

    def test_cli_overrides_env_and_yaml(self, monkeypatch):
        monkeypatch.setenv("SYNC_STATE_DIR", "/env")
        config = load_config(state_dir="/cli", yaml_fallbacks={"state_dir": "/yaml"})
        assert config.state_dir == "/cli"

    def test_yaml_null_state_dir_means_memory(self):
        assert load_config(yaml_fallbacks={"state_dir": None}).state_dir is None

    def test_invalid_yaml_value_is_rejected(self):
        with pytest.raises(ValueError, match="max_workers"):
            load_config(yaml_fallbacks={"max_workers": 100})

    def test_empty_yaml_fallbacks_same_as_none(self):
        assert load_config(yaml_fallbacks={}) == load_config()
