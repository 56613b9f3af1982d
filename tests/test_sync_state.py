"""Tests for the durable state file and content hashing.

Covers:
- load returns the default when the file is missing
- save creates parent directories and leaves no temp files behind
- save/load round-trip
- content_hash ignores key order but not values
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sync_reconciler.sync.state import (
    StateFile,
    content_hash,
    safe_filename,
    stable_dumps,
)

# ---------------------------------------------------------------------------
# StateFile
# ---------------------------------------------------------------------------


class TestStateFileLoad:
    """Tests for StateFile.load()."""

    def test_load_returns_default_when_file_missing(self, tmp_path: Path):
        """load() returns the default when no file exists."""
        state = StateFile(tmp_path / "missing.json")
        assert state.load(default={}) == {}
        assert state.exists() is False

    def test_load_without_default_returns_none(self, tmp_path: Path):
        assert StateFile(tmp_path / "missing.json").load() is None


class TestStateFileSave:
    """Tests for StateFile.save()."""

    def test_save_creates_parent_directories(self, tmp_path: Path):
        """save() creates nested directories on first use."""
        path = tmp_path / "nested" / "deep" / "state.json"
        StateFile(path).save({"a": 1})
        assert path.is_file()

    def test_round_trip(self, tmp_path: Path):
        state = StateFile(tmp_path / "state.json")
        state.save({"contracts": [{"origin_id": "1"}], "page": 3})
        assert state.load() == {"contracts": [{"origin_id": "1"}], "page": 3}

    def test_no_temp_files_left(self, tmp_path: Path):
        StateFile(tmp_path / "state.json").save({"a": 1})
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_datetimes_are_serialised(self, tmp_path: Path):
        """Values json cannot encode natively fall back to str()."""
        state = StateFile(tmp_path / "state.json")
        state.save({"at": datetime(2026, 1, 1, tzinfo=timezone.utc)})
        assert state.load()["at"].startswith("2026-01-01")

    def test_delete_is_idempotent(self, tmp_path: Path):
        state = StateFile(tmp_path / "state.json")
        state.save({})
        state.delete()
        state.delete()
        assert state.exists() is False


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


class TestContentHash:
    """Tests for content_hash()."""

    def test_key_order_is_irrelevant(self):
        assert content_hash({"a": 1, "b": {"x": 1, "y": 2}}) == content_hash(
            {"b": {"y": 2, "x": 1}, "a": 1}
        )

    def test_different_values_differ(self):
        assert content_hash({"a": 1}) != content_hash({"a": 2})

    def test_list_order_matters(self):
        assert content_hash([1, 2]) != content_hash([2, 1])

    def test_is_sha256_hex(self):
        digest = content_hash({"a": 1})
        assert len(digest) == 64
        int(digest, 16)

    def test_stable_dumps_is_compact(self):
        assert stable_dumps({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'


class TestSafeFilename:
    def test_replaces_unsafe_characters(self):
        assert safe_filename("crm/people v2") == "crm_people_v2"

    def test_keeps_dashes_and_underscores(self):
        assert safe_filename("a-b_c") == "a-b_c"
