"""Helpers shared between the MCP server and the engine."""

from .async_utils import init_semaphore, run_sync, run_sync_limited

__all__ = ["init_semaphore", "run_sync", "run_sync_limited"]
