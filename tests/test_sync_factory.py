"""Tests for build_engine."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from sync_reconciler.config import Config
from sync_reconciler.config_schema import UnifiedConfig
from sync_reconciler.sync.contracts import FileContractStore, InMemoryContractStore
from sync_reconciler.sync.factory import build_engine
from sync_reconciler.sync.logs import FileLogStore, InMemoryLogStore
from sync_reconciler.sync.models import ProviderRef
from sync_reconciler.sync.providers import RestObjectProvider

from conftest import FakeTarget, build_sync


def rest_sync(**overrides):
    return build_sync(
        source=ProviderRef(id="crm", config={"location": "https://crm.example.org"}),
        target=ProviderRef(id="dir", config={"location": "https://dir.example.org"}),
        **overrides,
    )


class TestBuildEngine:
    def test_in_memory_state(self, mock_config):
        engine = build_engine(UnifiedConfig(synchronizations=[rest_sync()]), mock_config)

        assert isinstance(engine.contracts, InMemoryContractStore)
        assert isinstance(engine.logs, InMemoryLogStore)
        assert engine.max_workers == 2
        assert engine.execution_time == 60.0
        assert engine.synchronizations.get("people").id == "people"

    def test_file_state(self, tmp_path: Path):
        config = Config(state_dir=str(tmp_path))
        engine = build_engine(UnifiedConfig(), config)

        assert isinstance(engine.contracts, FileContractStore)
        assert isinstance(engine.logs, FileLogStore)

    def test_rest_provider_created_per_type(self, mock_config):
        engine = build_engine(UnifiedConfig(synchronizations=[rest_sync()]), mock_config)

        assert set(engine.providers) == {"rest"}
        assert isinstance(engine.providers["rest"], RestObjectProvider)

    def test_supplied_providers_win(self, mock_config):
        target = FakeTarget()
        source = MagicMock()
        unified = UnifiedConfig(synchronizations=[build_sync()])

        engine = build_engine(
            unified, mock_config, providers={"source": source, "target": target}
        )

        assert engine.providers == {"source": source, "target": target}

    def test_unknown_provider_type(self, mock_config):
        with pytest.raises(ValueError, match="Unknown provider type"):
            build_engine(UnifiedConfig(synchronizations=[build_sync()]), mock_config)

    def test_retention_is_passed(self, mock_config):
        unified = UnifiedConfig(retention={"contract_log_ttl_days": 3})
        engine = build_engine(unified, mock_config)
        assert engine.retention.contract_log_ttl_days == 3

    def test_lock_ttl_reaches_rule_executor(self):
        engine = build_engine(UnifiedConfig(), Config(state_dir=None, lock_ttl=12.0))
        assert engine.rules.lock_manager.ttl == 12.0
