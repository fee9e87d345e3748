"""Logging utilities for the Drafts MCP server.

Everything is written to stderr: under the stdio transport stdout carries the
MCP protocol stream, and the callback listener's uvicorn loggers share the
package handler instead of uvicorn's default stdout configuration.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Iterable, Literal

from fastmcp.utilities.logging import configure_logging as _fastmcp_configure_logging

_PACKAGE_LOGGER_NAME = "drafts_mcp"
_UVICORN_LOGGER_NAME = "uvicorn"
_CONFIGURED = False


def _qualify(name: str | None) -> str:
    if not name:
        return _PACKAGE_LOGGER_NAME
    if name.startswith(_PACKAGE_LOGGER_NAME):
        return name
    return f"{_PACKAGE_LOGGER_NAME}.{name}"


def _uvicorn_level(level: str | int) -> str:
    numeric = level if isinstance(level, int) else logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    return logging.getLevelName(max(numeric, logging.WARNING))


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] | int = "INFO",
    **rich_kwargs: Any,
) -> logging.Logger:
    """Configure FastMCP logging for the package and the callback listener.

    uvicorn is held at WARNING or above so request chatter from the Drafts
    callbacks stays out of the log unless something fails.
    """

    global _CONFIGURED

    logger = logging.getLogger(_PACKAGE_LOGGER_NAME)
    _fastmcp_configure_logging(level=level, logger=logger, **rich_kwargs)
    _fastmcp_configure_logging(
        level=_uvicorn_level(level),
        logger=logging.getLogger(_UVICORN_LOGGER_NAME),
        **rich_kwargs,
    )

    _CONFIGURED = True
    return logger


def redirect_stdout_handlers(names: Iterable[str] | None = None) -> int:
    """Point any stream handler writing to stdout at stderr instead.

    Returns the number of handlers that were moved.
    """

    moved = 0
    for name in names or (_PACKAGE_LOGGER_NAME, _UVICORN_LOGGER_NAME, ""):
        for handler in logging.getLogger(name or None).handlers:
            if isinstance(handler, logging.StreamHandler) and handler.stream is sys.stdout:
                handler.setStream(sys.stderr)
                moved += 1
    return moved


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger scoped to the package namespace."""

    if not _CONFIGURED:
        configure_logging()

    qualified = _qualify(name)
    return logging.getLogger(qualified)
