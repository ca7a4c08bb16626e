"""Steeple: agent-facing MCP interface and OAuth server for a church directory."""

__version__ = "0.1.0"
