"""Tests for the source cursor and list-response extraction."""

from __future__ import annotations

from unittest.mock import MagicMock

from sync_reconciler.sync.cursor import (
    SourceCursor,
    extract_next_link,
    extract_objects,
    extract_origin_id,
)
from sync_reconciler.sync.models import ProviderRef

from conftest import FakeSource, build_sync


class TestExtractObjects:
    def test_bare_list(self):
        assert extract_objects([{"id": 1}]) == [{"id": 1}]

    def test_envelope_keys(self):
        assert extract_objects({"results": [1, 2]}) == [1, 2]
        assert extract_objects({"data": [3]}) == [3]

    def test_hal_embedded(self):
        assert extract_objects({"_embedded": {"items": [{"id": 1}]}}) == [{"id": 1}]

    def test_results_position(self):
        body = {"payload": {"rows": [1]}}
        assert extract_objects(body, "payload.rows") == [1]

    def test_root_position(self):
        assert extract_objects([1, 2], "_root") == [1, 2]

    def test_unknown_shape(self):
        assert extract_objects({"total": 0}) == []


class TestExtractNextLink:
    def test_hal_link(self):
        body = {"_links": {"next": {"href": "https://x/page/2"}}}
        assert extract_next_link(body) == "https://x/page/2"

    def test_plain_next(self):
        assert extract_next_link({"next": "/items?page=2"}) == "/items?page=2"

    def test_none(self):
        assert extract_next_link({"next": None}) is None
        assert extract_next_link([1]) is None


class TestExtractOriginId:
    def test_default_positions(self):
        assert extract_origin_id({"uuid": "abc"}) == "abc"
        assert extract_origin_id({"id": 5}) == "5"

    def test_configured_position(self):
        assert extract_origin_id({"meta": {"key": "k"}}, "meta.key") == "k"

    def test_missing_or_empty(self):
        assert extract_origin_id({"id": ""}) is None
        assert extract_origin_id({"name": "x"}) is None


class TestSourceCursor:
    def test_pages_until_exhausted(self):
        source = FakeSource([[{"id": "1"}], [{"id": "2"}]])
        pages = list(SourceCursor(source).pages(build_sync()))
        assert [page.number for page in pages] == [1, 2]
        assert [page.has_more for page in pages] == [True, False]
        assert pages[1].objects[0].origin_id == "2"

    def test_starts_at_current_page(self):
        source = FakeSource([[{"id": "1"}], [{"id": "2"}], [{"id": "3"}]])
        pages = list(SourceCursor(source).pages(build_sync(current_page=3)))
        assert [page.number for page in pages] == [3]
        assert source.listed == [3]

    def test_stops_on_empty_page(self):
        source = MagicMock()
        source.list.side_effect = [([{"id": "1"}], True), ([], True)]
        pages = list(SourceCursor(source).pages(build_sync()))
        assert len(pages) == 1

    def test_objects_without_id_are_kept_apart(self):
        source = FakeSource([[{"id": "1"}, {"name": "anonymous"}]])
        page = next(SourceCursor(source).pages(build_sync()))
        assert [obj.origin_id for obj in page.objects] == ["1"]
        assert page.unidentified == [{"name": "anonymous"}]
        assert page.size == 2

    def test_uses_configured_id_position(self):
        sync = build_sync(
            source=ProviderRef(id="source", type="fake", config={"id_position": "key"})
        )
        source = FakeSource([[{"key": "k1", "id": "ignored"}]])
        page = next(SourceCursor(source).pages(sync))
        assert page.objects[0].origin_id == "k1"

    def test_advance_persists(self):
        store = MagicMock()
        sync = build_sync()
        advanced = SourceCursor(MagicMock(), store=store).advance(sync, 4)
        assert advanced.current_page == 4
        store.save.assert_called_once_with(advanced)

    def test_advance_without_store(self):
        advanced = SourceCursor(MagicMock()).advance(build_sync(), 0)
        assert advanced.current_page == 1
