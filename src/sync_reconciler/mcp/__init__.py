"""MCP stdio server exposing the reconciliation engine as tools."""
