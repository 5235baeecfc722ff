"""Backpack - personal MCP server for AI assistants."""

__version__ = "1.0.0"
