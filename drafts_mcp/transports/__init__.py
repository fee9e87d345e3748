"""Transport wiring for the Drafts MCP server."""

from __future__ import annotations

from .stdio import run_stdio

__all__ = [
    "run_stdio",
]
