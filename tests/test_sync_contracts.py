"""Tests for contract stores.

Covers:
- find_or_create returns an unsaved contract for unknown objects
- save bumps the revision and rejects stale writers
- lookups by origin and target id, deletion
- file persistence across store instances
"""

from __future__ import annotations

from pathlib import Path

import pytest

from sync_reconciler.sync.contracts import FileContractStore, InMemoryContractStore
from sync_reconciler.sync.errors import ContractConflictError
from sync_reconciler.sync.models import TargetAction


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path: Path):
    if request.param == "memory":
        return InMemoryContractStore()
    return FileContractStore(tmp_path)


class TestContractStore:
    def test_find_or_create_new(self, store):
        contract = store.find_or_create("people", "1")
        assert contract.revision == 0
        assert contract.origin_id == "1"
        assert store.find_by_origin_id("people", "1") is None

    def test_save_bumps_revision(self, store):
        saved = store.save(store.find_or_create("people", "1"))
        assert saved.revision == 1
        assert saved.created is not None
        again = store.save(saved.model_copy(update={"target_id": "t1"}))
        assert again.revision == 2
        assert again.created == saved.created

    def test_find_or_create_returns_stored(self, store):
        saved = store.save(store.find_or_create("people", "1"))
        assert store.find_or_create("people", "1") == saved

    def test_stale_save_conflicts(self, store):
        original = store.save(store.find_or_create("people", "1"))
        store.save(original.model_copy(update={"target_id": "t1"}))
        with pytest.raises(ContractConflictError):
            store.save(original.model_copy(update={"target_id": "t2"}))

    def test_two_new_contracts_for_one_object_conflict(self, store):
        first = store.find_or_create("people", "1")
        second = store.find_or_create("people", "1")
        store.save(first)
        with pytest.raises(ContractConflictError):
            store.save(second)

    def test_find_by_target_id(self, store):
        store.save(
            store.find_or_create("people", "1").model_copy(update={"target_id": "t9"})
        )
        assert store.find_by_target_id("people", "t9").origin_id == "1"
        assert store.find_by_target_id("people", "nope") is None

    def test_synchronizations_are_separate(self, store):
        store.save(store.find_or_create("people", "1"))
        store.save(store.find_or_create("places", "1"))
        assert len(store.all_for_synchronization("people")) == 1
        assert store.all_for_synchronization("other") == []

    def test_delete(self, store):
        store.save(store.find_or_create("people", "1"))
        assert store.delete_by_origin_id("people", "1") is True
        assert store.delete_by_origin_id("people", "1") is False
        assert store.find_by_origin_id("people", "1") is None


class TestFileContractStore:
    def test_persists_across_instances(self, tmp_path: Path):
        first = FileContractStore(tmp_path)
        first.save(
            first.find_or_create("people", "1").model_copy(
                update={"target_id": "t1", "target_last_action": TargetAction.CREATE}
            )
        )

        second = FileContractStore(tmp_path)
        contract = second.find_by_origin_id("people", "1")
        assert contract.target_id == "t1"
        assert contract.target_last_action == TargetAction.CREATE
        assert contract.revision == 1

    def test_file_name_is_safe(self, tmp_path: Path):
        store = FileContractStore(tmp_path)
        store.save(store.find_or_create("crm/people", "1"))
        assert (tmp_path / "contracts_crm_people.json").is_file()

    def test_delete_is_persisted(self, tmp_path: Path):
        store = FileContractStore(tmp_path)
        store.save(store.find_or_create("people", "1"))
        store.delete_by_origin_id("people", "1")
        assert FileContractStore(tmp_path).all_for_synchronization("people") == []
