"""Drafts x-callback-url client with bounded retries."""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from typing import Any, Awaitable, Callable, Mapping, Sequence, TypeVar
from urllib.parse import quote, urlencode

from . import metrics
from .callbacks import CallbackServer
from .errors import EXTERNAL_FAILURE, LAUNCH_FAILED, VALIDATION_ERROR, DraftsError
from .logging import get_logger
from .models import CREATE_FOLDERS, SEARCH_FOLDERS, CallbackUrls, Draft

__all__ = [
    "DraftsClient",
    "Launcher",
    "build_url",
    "encode_component",
    "launch_url",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_RETRY_DELAY",
]

LOGGER = get_logger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = timedelta(milliseconds=1000)
DEFAULT_SCHEME = "drafts"
DEFAULT_OPEN_COMMAND = "open"

Launcher = Callable[[str], Awaitable[None]]
ParamValue = str | Sequence[str] | bool | None
T = TypeVar("T")


def encode_component(value: str) -> str:
    """Percent-encode everything outside the RFC 3986 unreserved set.

    Unlike ``encodeURIComponent``-style encoders this also escapes ``! ' ( ) *``,
    which the Drafts URL parser does not accept literally.
    """

    return quote(value, safe="")


def build_url(
    endpoint: str,
    params: Mapping[str, ParamValue],
    callbacks: CallbackUrls,
    *,
    scheme: str = DEFAULT_SCHEME,
) -> str:
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            pairs.append((key, "true" if value else "false"))
        elif isinstance(value, str):
            pairs.append((key, value))
        else:
            pairs.extend((key, str(item)) for item in value)
    pairs.append(("x-success", callbacks.success))
    pairs.append(("x-error", callbacks.error))
    pairs.append(("x-cancel", callbacks.cancel))
    query = urlencode(pairs, quote_via=quote, safe="")
    return f"{scheme}://x-callback-url/{endpoint}?{query}"


async def launch_url(url: str, *, command: str = DEFAULT_OPEN_COMMAND) -> None:
    """Hand ``url`` to the OS opener. Returns once the opener has accepted it."""

    try:
        process = await asyncio.create_subprocess_exec(
            command,
            url,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise DraftsError(LAUNCH_FAILED, f"Unable to run {command}: {exc}", details={"command": command}) from exc
    _, stderr = await process.communicate()
    if process.returncode != 0:
        message = stderr.decode("utf-8", "replace").strip() or f"{command} exited with status {process.returncode}"
        raise DraftsError(
            LAUNCH_FAILED,
            message,
            details={"command": command, "returncode": process.returncode},
        )


def _require_choice(value: str | None, choices: Sequence[str], field_name: str) -> None:
    if value is not None and value not in choices:
        raise DraftsError(
            VALIDATION_ERROR,
            f"{field_name} must be one of: {', '.join(choices)}",
            details={field_name: value},
        )


class DraftsClient:
    """Run Drafts URL actions as request/response calls.

    Each attempt mints a new request id, registers it with the callback server,
    opens the ``drafts://`` URL and waits for the matching callback. Failed
    attempts are retried ``max_retries`` times with a fixed delay in between.
    """

    def __init__(
        self,
        callbacks: CallbackServer,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: timedelta = DEFAULT_RETRY_DELAY,
        scheme: str = DEFAULT_SCHEME,
        open_command: str = DEFAULT_OPEN_COMMAND,
        launcher: Launcher | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._callbacks = callbacks
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._scheme = scheme
        self._open_command = open_command
        self._launcher = launcher

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def retry_delay(self) -> timedelta:
        return self._retry_delay

    async def _launch(self, url: str) -> None:
        if self._launcher is not None:
            await self._launcher(url)
        else:
            await launch_url(url, command=self._open_command)

    async def _execute_with_retry(self, operation: str, attempt: Callable[[], Awaitable[T]]) -> T:
        total_attempts = self._max_retries + 1
        for number in range(1, total_attempts + 1):
            try:
                return await attempt()
            except DraftsError as exc:
                if not exc.retryable or number == total_attempts:
                    if number > 1:
                        LOGGER.warning(
                            "client.retries_exhausted",
                            extra={"context": {"operation": operation, "attempts": number, "code": exc.code}},
                        )
                    raise
                LOGGER.info(
                    "client.retry",
                    extra={
                        "context": {
                            "operation": operation,
                            "attempt": number,
                            "code": exc.code,
                            "error": exc.message,
                            "delay_ms": int(self._retry_delay.total_seconds() * 1000),
                        }
                    },
                )
                metrics.record_retry()
                await asyncio.sleep(self._retry_delay.total_seconds())
        raise AssertionError("unreachable")  # pragma: no cover

    async def _invoke(self, endpoint: str, params: Mapping[str, ParamValue]) -> dict[str, str]:
        request_id = str(uuid.uuid4())
        url = build_url(endpoint, params, self._callbacks.get_callback_urls(request_id), scheme=self._scheme)
        response = self._callbacks.register_request(request_id)
        LOGGER.debug("client.invoke", extra={"context": {"endpoint": endpoint, "request_id": request_id}})
        try:
            await self._launch(url)
        except BaseException:
            response.cancel()
            raise

        outcome = await response
        if not outcome.success:
            raise DraftsError(
                EXTERNAL_FAILURE,
                outcome.error or "Unknown error from Drafts",
                details={"endpoint": endpoint, "request_id": request_id},
            )
        return dict(outcome.data)

    async def call(self, endpoint: str, params: Mapping[str, ParamValue]) -> dict[str, str]:
        """Invoke ``endpoint`` with retries and return the success parameters."""

        return await self._execute_with_retry(endpoint, lambda: self._invoke(endpoint, params))

    async def create_draft(
        self,
        text: str,
        *,
        tags: Sequence[str] | None = None,
        action: str | None = None,
        folder: str | None = None,
    ) -> str | None:
        """Create a draft; returns its uuid when Drafts reports one."""

        _require_choice(folder, CREATE_FOLDERS, "folder")
        data = await self.call(
            "create",
            {"text": text, "tag": list(tags) if tags else None, "action": action, "folder": folder},
        )
        return data.get("uuid") or None

    async def get_draft(self, uuid: str) -> Draft:
        async def attempt() -> Draft:
            data = await self._invoke("get", {"uuid": uuid})
            if not data.get("text"):
                raise DraftsError(EXTERNAL_FAILURE, "No content returned from Drafts", details={"uuid": uuid})
            return Draft.from_callback(uuid, data)

        return await self._execute_with_retry("get", attempt)

    async def append_to_draft(self, uuid: str, text: str) -> None:
        await self.call("append", {"uuid": uuid, "text": text})

    async def prepend_to_draft(self, uuid: str, text: str) -> None:
        await self.call("prepend", {"uuid": uuid, "text": text})

    async def open_draft(self, *, uuid: str | None = None, title: str | None = None) -> None:
        if not uuid and not title:
            raise DraftsError(VALIDATION_ERROR, "Either uuid or title must be provided")
        await self.call("open", {"uuid": uuid or None, "title": title or None})

    async def run_action(self, action: str, text: str) -> None:
        await self.call("runAction", {"action": action, "text": text})

    async def search_drafts(
        self,
        *,
        query: str | None = None,
        tag: str | None = None,
        folder: str | None = None,
    ) -> None:
        _require_choice(folder, SEARCH_FOLDERS, "folder")
        await self.call("search", {"query": query, "tag": tag, "folder": folder})

    def describe(self) -> dict[str, Any]:
        return {
            "scheme": self._scheme,
            "max_retries": self._max_retries,
            "retry_delay_ms": int(self._retry_delay.total_seconds() * 1000),
        }
