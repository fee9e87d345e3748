"""Local HTTP listener that turns x-callback-url responses into settled futures.

Every outbound Drafts invocation embeds three callback URLs that point back at
this listener. The request id in the path selects the pending future to settle;
whichever of success, error, cancel or timeout arrives first wins, and the
table entry is removed at that moment so later arrivals are ignored.
"""

from __future__ import annotations

import asyncio
import errno
import socket
from dataclasses import dataclass, field
from datetime import timedelta
from time import monotonic

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from . import metrics
from .errors import CALLBACK_TIMEOUT, CONFIG_ERROR, DUPLICATE_REQUEST, SHUTTING_DOWN, VALIDATION_ERROR, DraftsError
from .logging import get_logger
from .models import UNKNOWN_ERROR, USER_CANCELLED, CallbackOutcome, CallbackUrls

__all__ = ["CallbackServer", "PendingRequest", "DEFAULT_REQUEST_TIMEOUT"]

LOGGER = get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT = timedelta(seconds=30)
_STARTUP_POLL_SECONDS = 0.01
_LOOPBACK_V4 = "127.0.0.1"
_LOOPBACK_V6 = "::1"
_BIND_ATTEMPTS = 5


def _bind(family: socket.AddressFamily, host: str, port: int) -> socket.socket:
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if family == socket.AF_INET6:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    return sock


def _bind_listener(host: str) -> list[socket.socket]:
    """Bind ``host`` on an ephemeral port.

    When ``host`` is the IPv4 loopback, ``::1`` is bound on the same port too:
    callback URLs name ``localhost``, which may resolve to either family.
    """

    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    for _ in range(_BIND_ATTEMPTS):
        primary = _bind(family, host, 0)
        if host != _LOOPBACK_V4 or not socket.has_ipv6:
            return [primary]
        port = primary.getsockname()[1]
        try:
            return [primary, _bind(socket.AF_INET6, _LOOPBACK_V6, port)]
        except OSError as exc:
            if exc.errno != errno.EADDRINUSE:
                LOGGER.debug("callbacks.ipv6_unavailable", extra={"context": {"reason": str(exc)}})
                return [primary]
            primary.close()
    LOGGER.warning("callbacks.ipv6_port_collision", extra={"context": {"attempts": _BIND_ATTEMPTS}})
    return [_bind(family, host, 0)]


@dataclass(slots=True)
class PendingRequest:
    """A registered request id awaiting its callback."""

    future: asyncio.Future[CallbackOutcome]
    timer: asyncio.TimerHandle
    created_at: float = field(default_factory=monotonic)


class CallbackServer:
    """Correlate inbound x-success / x-error / x-cancel calls with waiting requests."""

    def __init__(
        self,
        *,
        host: str = _LOOPBACK_V4,
        public_host: str = "localhost",
        request_timeout: timedelta = DEFAULT_REQUEST_TIMEOUT,
        enable_metrics: bool = False,
    ) -> None:
        self._host = host
        self._public_host = public_host
        self._request_timeout = request_timeout
        self._enable_metrics = enable_metrics
        self._pending: dict[str, PendingRequest] = {}
        self._port: int | None = None
        self._addresses: list[str] = []
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self.app = self._build_app()

    @property
    def port(self) -> int | None:
        return self._port

    def get_port(self) -> int:
        if self._port is None:
            raise DraftsError(CONFIG_ERROR, "Callback server is not running")
        return self._port

    @property
    def addresses(self) -> list[str]:
        """Interfaces the listener is bound to while running."""

        return list(self._addresses)

    @property
    def is_running(self) -> bool:
        return self._serve_task is not None and not self._serve_task.done()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def request_timeout(self) -> timedelta:
        return self._request_timeout

    async def start(self) -> int:
        """Serve on an ephemeral loopback port and return that port."""

        if self.is_running and self._port is not None:
            return self._port

        try:
            sockets = _bind_listener(self._host)
        except OSError as exc:
            raise DraftsError(
                CONFIG_ERROR,
                f"Unable to bind callback listener on {self._host}",
                details={"host": self._host, "reason": str(exc)},
            ) from exc
        port = sockets[0].getsockname()[1]

        # Logging goes through the package handlers configured in .logging.
        server = uvicorn.Server(
            uvicorn.Config(
                self.app,
                host=self._host,
                port=port,
                lifespan="off",
                access_log=False,
                log_level="warning",
                log_config=None,
                timeout_graceful_shutdown=5,
            )
        )
        task = asyncio.create_task(server.serve(sockets=sockets), name="drafts-mcp-callback-server")

        while not server.started:
            if task.done():
                for sock in sockets:
                    sock.close()
                exc = task.exception()
                raise DraftsError(
                    CONFIG_ERROR,
                    "Callback listener failed to start",
                    details={"host": self._host, "port": port, "reason": str(exc) if exc else None},
                ) from exc
            await asyncio.sleep(_STARTUP_POLL_SECONDS)

        self._server = server
        self._serve_task = task
        self._port = port
        self._addresses = [sock.getsockname()[0] for sock in sockets]
        LOGGER.info("callbacks.start", extra={"context": {"addresses": self._addresses, "port": port}})
        return port

    async def stop(self) -> None:
        """Reject everything still pending, then close the listener."""

        pending = list(self._pending.items())
        self._pending.clear()
        for request_id, entry in pending:
            entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(
                    DraftsError(
                        SHUTTING_DOWN,
                        "Callback server shutting down",
                        details={"request_id": request_id},
                    )
                )

        server, task = self._server, self._serve_task
        port = self._port
        self._server = None
        self._serve_task = None
        self._port = None
        self._addresses = []

        if server is not None:
            server.should_exit = True
        if task is not None:
            await task
            LOGGER.info(
                "callbacks.stop",
                extra={"context": {"port": port, "rejected": len(pending)}},
            )

    def get_callback_urls(self, request_id: str) -> CallbackUrls:
        base_url = f"http://{self._public_host}:{self.get_port()}"
        return CallbackUrls(
            success=f"{base_url}/x-success/{request_id}",
            error=f"{base_url}/x-error/{request_id}",
            cancel=f"{base_url}/x-cancel/{request_id}",
        )

    def register_request(self, request_id: str) -> asyncio.Future[CallbackOutcome]:
        """Create the pending entry for ``request_id`` and return its future.

        Must be called from the event loop that serves the callbacks. The future
        resolves with a :class:`CallbackOutcome` or fails with a
        ``CALLBACK_TIMEOUT`` / ``SHUTTING_DOWN`` :class:`DraftsError`.
        """

        if not request_id:
            raise DraftsError(VALIDATION_ERROR, "Request id must be a non-empty string")
        if request_id in self._pending:
            raise DraftsError(
                DUPLICATE_REQUEST,
                f"Request {request_id} is already awaiting a callback",
                details={"request_id": request_id},
            )

        loop = asyncio.get_running_loop()
        future: asyncio.Future[CallbackOutcome] = loop.create_future()
        timer = loop.call_later(self._request_timeout.total_seconds(), self._expire, request_id, future)
        self._pending[request_id] = PendingRequest(future=future, timer=timer)
        future.add_done_callback(lambda done: self._discard_cancelled(request_id, done))
        return future

    def _settle(self, request_id: str, outcome: CallbackOutcome, kind: str) -> bool:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            LOGGER.debug("callbacks.unmatched", extra={"context": {"request_id": request_id, "kind": kind}})
            return False
        entry.timer.cancel()
        if entry.future.done():
            return False
        entry.future.set_result(outcome)
        metrics.record_callback(kind)
        LOGGER.debug(
            "callbacks.settled",
            extra={
                "context": {
                    "request_id": request_id,
                    "kind": kind,
                    "elapsed_seconds": round(monotonic() - entry.created_at, 3),
                }
            },
        )
        return True

    def _expire(self, request_id: str, future: asyncio.Future[CallbackOutcome]) -> None:
        entry = self._pending.get(request_id)
        if entry is None or entry.future is not future:
            return
        del self._pending[request_id]
        if future.done():
            return
        timeout_ms = int(self._request_timeout.total_seconds() * 1000)
        future.set_exception(
            DraftsError(
                CALLBACK_TIMEOUT,
                f"Request {request_id} timed out after {timeout_ms}ms",
                details={"request_id": request_id, "timeout_ms": timeout_ms},
            )
        )
        metrics.record_callback("timeout")
        LOGGER.warning("callbacks.timeout", extra={"context": {"request_id": request_id, "timeout_ms": timeout_ms}})

    def _discard_cancelled(self, request_id: str, future: asyncio.Future[CallbackOutcome]) -> None:
        # The awaiting caller went away; free the slot so the id is not held until timeout.
        if not future.cancelled():
            return
        entry = self._pending.get(request_id)
        if entry is not None and entry.future is future:
            del self._pending[request_id]
            entry.timer.cancel()

    async def _handle_success(self, request: Request) -> Response:
        request_id = request.path_params["request_id"]
        data = {key: value for key, value in request.query_params.items()}
        self._settle(request_id, CallbackOutcome.ok(data), "success")
        return PlainTextResponse("OK")

    async def _handle_error(self, request: Request) -> Response:
        request_id = request.path_params["request_id"]
        reason = request.query_params.get("error") or UNKNOWN_ERROR
        self._settle(request_id, CallbackOutcome.failed(reason), "error")
        return PlainTextResponse("OK")

    async def _handle_cancel(self, request: Request) -> Response:
        request_id = request.path_params["request_id"]
        self._settle(request_id, CallbackOutcome.failed(USER_CANCELLED), "cancel")
        return PlainTextResponse("OK")

    async def _handle_health(self, _request: Request) -> Response:
        return JSONResponse({"status": "ok", "port": self._port})

    async def _handle_metrics(self, _request: Request) -> Response:
        registry = metrics.get_registry_optional()
        if registry is None:
            return PlainTextResponse("metrics unavailable\n", status_code=503)
        body = metrics.format_prometheus(registry.snapshot(), pending_requests=self.pending_count)
        return PlainTextResponse(body, media_type="text/plain; version=0.0.4")

    def _build_app(self) -> Starlette:
        routes = [
            Route("/x-success/{request_id}", self._handle_success, methods=["GET"]),
            Route("/x-error/{request_id}", self._handle_error, methods=["GET"]),
            Route("/x-cancel/{request_id}", self._handle_cancel, methods=["GET"]),
            Route("/health", self._handle_health, methods=["GET"]),
        ]
        if self._enable_metrics:
            routes.append(Route("/metrics", self._handle_metrics, methods=["GET"]))
        return Starlette(routes=routes)
