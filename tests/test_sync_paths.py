"""Tests for dotted-path helpers."""

from __future__ import annotations

import pytest

from sync_reconciler.sync.paths import (
    DOT_ESCAPE,
    delete_path,
    encode_keys,
    get_path,
    has_path,
    set_path,
    split_path,
)


class TestGetPath:
    def test_nested_dict(self):
        assert get_path({"a": {"b": {"c": 1}}}, "a.b.c") == 1

    def test_list_index(self):
        assert get_path({"lines": ["x", "y"]}, "lines.1") == "y"

    def test_missing_returns_default(self):
        assert get_path({"a": {}}, "a.b", default="none") == "none"

    def test_index_out_of_range(self):
        assert get_path({"a": [1]}, "a.5") is None

    def test_empty_segments_ignored(self):
        assert split_path("a..b.") == ["a", "b"]


class TestHasPath:
    def test_none_value_counts_as_present(self):
        assert has_path({"a": None}, "a") is True

    def test_missing(self):
        assert has_path({"a": 1}, "b") is False

    def test_empty_path(self):
        assert has_path({"a": 1}, "") is False


class TestSetPath:
    def test_creates_intermediate_dicts(self):
        data: dict = {}
        set_path(data, "contact.email", "a@b.c")
        assert data == {"contact": {"email": "a@b.c"}}

    def test_replaces_scalar_on_the_way(self):
        data = {"a": 1}
        set_path(data, "a.b", 2)
        assert data == {"a": {"b": 2}}

    def test_list_append(self):
        data = {"items": [1]}
        set_path(data, "items.1", 2)
        assert data == {"items": [1, 2]}

    def test_list_gap_rejected(self):
        with pytest.raises(ValueError, match="out of range"):
            set_path({"items": []}, "items.3", 1)

    def test_empty_path_rejected(self):
        with pytest.raises(ValueError):
            set_path({}, "", 1)


class TestDeletePath:
    def test_removes_key(self):
        data = {"a": {"b": 1, "c": 2}}
        assert delete_path(data, "a.b") is True
        assert data == {"a": {"c": 2}}

    def test_absent_path(self):
        assert delete_path({"a": 1}, "b.c") is False

    def test_list_element(self):
        data = {"a": [1, 2, 3]}
        assert delete_path(data, "a.1") is True
        assert data == {"a": [1, 3]}


class TestEncodeKeys:
    def test_escapes_dots_recursively(self):
        data = {"x.y": [{"a.b": 1}]}
        encoded = encode_keys(data, ".", DOT_ESCAPE)
        assert encoded == {f"x{DOT_ESCAPE}y": [{f"a{DOT_ESCAPE}b": 1}]}
        assert encode_keys(encoded, DOT_ESCAPE, ".") == data

    def test_does_not_mutate_input(self):
        data = {"a.b": 1}
        encode_keys(data, ".", DOT_ESCAPE)
        assert data == {"a.b": 1}
