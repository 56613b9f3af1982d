"""Tests for ToolSpec and ToolRegistry.

Covers:
- ToolSpec creation and immutability
- ToolRegistry read-only filtering
- ToolRegistry list_tools, tool_count, call_tool
- Error translation in call_tool
"""

import asyncio
import unittest
from unittest.mock import MagicMock

import mcp.types as types

from sync_reconciler.mcp.tools import ALL_SPECS
from sync_reconciler.mcp.tools.registry import ToolRegistry, ToolSpec
from sync_reconciler.sync.errors import SynchronizationNotFoundError


def _make_spec(name: str, mutating: bool = False, handler=None) -> ToolSpec:
    """Helper to create a ToolSpec for testing."""
    if handler is None:

        async def handler(engine, args):
            return types.CallToolResult(
                content=[types.TextContent(type="text", text=f"ok:{name}")]
            )

    return ToolSpec(
        tool=types.Tool(
            name=name,
            description=f"Test tool {name}",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        handler=handler,
        mutating=mutating,
    )


def _text(result: types.CallToolResult) -> str:
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


class TestToolSpec(unittest.TestCase):
    """Test ToolSpec dataclass."""

    def test_defaults_to_read_only(self):
        spec = _make_spec("sync_list")
        self.assertEqual(spec.tool.name, "sync_list")
        self.assertFalse(spec.mutating)

    def test_frozen(self):
        spec = _make_spec("sync_list")
        with self.assertRaises(AttributeError):
            spec.mutating = True


class TestToolRegistry(unittest.TestCase):
    """Test ToolRegistry class."""

    def setUp(self):
        self.specs = [
            _make_spec("sync_list"),
            _make_spec("sync_status"),
            _make_spec("sync_reconcile", mutating=True),
            _make_spec("sync_logs_cleanup", mutating=True),
        ]

    def test_all_tools_registered(self):
        registry = ToolRegistry(self.specs)
        self.assertEqual(registry.tool_count(), 4)

    def test_read_only_hides_mutating_tools(self):
        registry = ToolRegistry(self.specs, read_only=True)
        names = [t.name for t in registry.list_tools()]
        self.assertEqual(names, ["sync_list", "sync_status"])

    def test_call_tool_dispatches(self):
        registry = ToolRegistry(self.specs)
        result = asyncio.run(registry.call_tool("sync_status", None, MagicMock()))
        self.assertEqual(_text(result), "ok:sync_status")

    def test_handler_receives_engine_and_args(self):
        received = {}

        async def handler(engine, args):
            received["engine"] = engine
            received["args"] = args
            return types.CallToolResult(content=[])

        registry = ToolRegistry([_make_spec("sync_status", handler=handler)])
        engine = MagicMock()
        asyncio.run(registry.call_tool("sync_status", None, engine))
        self.assertIs(received["engine"], engine)
        self.assertEqual(received["args"], {})

    def test_unknown_tool_raises(self):
        registry = ToolRegistry(self.specs)
        with self.assertRaises(ValueError):
            asyncio.run(registry.call_tool("nope", {}, MagicMock()))

    def test_filtered_tool_raises(self):
        registry = ToolRegistry(self.specs, read_only=True)
        with self.assertRaises(ValueError):
            asyncio.run(registry.call_tool("sync_reconcile", {}, MagicMock()))

    def test_engine_error_translated(self):
        async def handler(engine, args):
            raise SynchronizationNotFoundError("Synchronization 'x' is not configured")

        registry = ToolRegistry([_make_spec("sync_status", handler=handler)])
        result = asyncio.run(
            registry.call_tool("sync_status", {"synchronization_id": "x"}, MagicMock())
        )
        self.assertTrue(result.isError)
        self.assertIn("Error (not_found)", _text(result))

    def test_value_error_is_validation_error(self):
        async def handler(engine, args):
            raise ValueError("synchronization_id is required")

        registry = ToolRegistry([_make_spec("sync_status", handler=handler)])
        result = asyncio.run(registry.call_tool("sync_status", {}, MagicMock()))
        self.assertIn("Error (validation_error)", _text(result))

    def test_unexpected_error_is_server_error(self):
        async def handler(engine, args):
            raise KeyError("boom")

        registry = ToolRegistry([_make_spec("sync_status", handler=handler)])
        result = asyncio.run(registry.call_tool("sync_status", {}, MagicMock()))
        self.assertTrue(result.isError)
        self.assertIn("Error (server_error)", _text(result))


class TestAllSpecs(unittest.TestCase):
    """The shipped tool set."""

    def test_names_are_unique(self):
        names = [spec.tool.name for spec in ALL_SPECS]
        self.assertEqual(len(names), len(set(names)))

    def test_read_only_view(self):
        names = {t.name for t in ToolRegistry(ALL_SPECS, read_only=True).list_tools()}
        self.assertEqual(names, {"sync_list", "sync_status"})

    def test_read_only_hint_matches_mutating_flag(self):
        for spec in ALL_SPECS:
            self.assertEqual(spec.tool.annotations.readOnlyHint, not spec.mutating)
