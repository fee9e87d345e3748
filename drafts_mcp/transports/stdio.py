"""stdio transport for the Drafts MCP server."""

from __future__ import annotations

from fastmcp import FastMCP

from ..logging import get_logger, redirect_stdout_handlers

logger = get_logger(__name__)


def run_stdio(server: FastMCP, *, show_banner: bool = False) -> None:
    """Serve MCP over stdin/stdout until the client disconnects.

    stdout belongs to the protocol stream, so log handlers still aimed at it are
    moved to stderr first. The callback listener is started by the server
    lifespan inside the same event loop.
    """

    moved = redirect_stdout_handlers()
    context = {"server": server.name, "show_banner": bool(show_banner)}
    if moved:
        logger.warning("transport.stdio.stdout_handlers_moved", extra={"context": {**context, "handlers": moved}})
    logger.info("transport.stdio.start", extra={"context": context})
    try:
        server.run(transport="stdio", show_banner=show_banner)
    except KeyboardInterrupt:
        logger.info("transport.stdio.interrupted", extra={"context": context})
        raise
    except Exception:
        logger.exception("transport.stdio.failed", extra={"context": context})
        raise
    logger.info("transport.stdio.stop", extra={"context": context})
