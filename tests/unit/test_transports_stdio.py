from __future__ import annotations

import logging
import sys
from typing import Any

import pytest

from drafts_mcp.transports.stdio import run_stdio


class _DummyServer:
    name = "drafts-mcp-test"

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    def run(self, *, transport: str, show_banner: bool) -> None:
        self.calls.append({"transport": transport, "show_banner": show_banner})


def test_run_stdio_invokes_fastmcp() -> None:
    dummy = _DummyServer()

    run_stdio(dummy)

    assert dummy.calls == [{"transport": "stdio", "show_banner": False}]


def test_run_stdio_propagates_keyboard_interrupt() -> None:
    class InterruptingServer(_DummyServer):
        def run(self, *, transport: str, show_banner: bool) -> None:
            raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        run_stdio(InterruptingServer())


def test_run_stdio_moves_stdout_handlers_before_serving() -> None:
    uvicorn_logger = logging.getLogger("uvicorn")
    handler = logging.StreamHandler(sys.stdout)
    uvicorn_logger.addHandler(handler)
    seen: list[Any] = []

    class RecordingServer(_DummyServer):
        def run(self, *, transport: str, show_banner: bool) -> None:
            seen.append(handler.stream)

    try:
        run_stdio(RecordingServer())
    finally:
        uvicorn_logger.removeHandler(handler)

    assert seen == [sys.stderr]
