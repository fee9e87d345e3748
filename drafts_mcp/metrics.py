from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from threading import RLock
from time import monotonic
from typing import Mapping

_DEFAULT_OPERATIONS = ("create", "get", "append", "prepend", "open", "run_action", "search", "list", "search_db")
_DEFAULT_CALLBACKS = ("success", "error", "cancel", "timeout")

_registry_lock = RLock()
_registry: "MetricsRegistry | None" = None


@dataclass(frozen=True)
class MetricsSnapshot:
    """Immutable snapshot of the current metrics state."""

    operations: Mapping[str, int]
    errors: Mapping[str, int]
    callbacks: Mapping[str, int]
    retries: int
    uptime_seconds: float


class MetricsRegistry:
    """Thread-safe registry storing counters and gauges for Prometheus export."""

    __slots__ = ("_operations", "_errors", "_callbacks", "_retries", "_lock", "_started_at")

    def __init__(self) -> None:
        self._operations: Counter[str] = Counter()
        self._errors: Counter[str] = Counter()
        self._callbacks: Counter[str] = Counter()
        self._retries = 0
        self._lock = RLock()
        self._started_at = monotonic()

    def record_operation(self, name: str, *, count: int = 1) -> None:
        if count <= 0:
            return
        key = name.strip().lower()
        if not key:
            return
        with self._lock:
            self._operations[key] += count

    def record_error(self, code: str, *, count: int = 1) -> None:
        if count <= 0:
            return
        key = code.strip().upper()
        if not key:
            return
        with self._lock:
            self._errors[key] += count

    def record_callback(self, kind: str, *, count: int = 1) -> None:
        if count <= 0:
            return
        key = kind.strip().lower() or "unknown"
        with self._lock:
            self._callbacks[key] += count

    def record_retry(self, *, count: int = 1) -> None:
        if count <= 0:
            return
        with self._lock:
            self._retries += count

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            operations: dict[str, int] = {name: int(self._operations.get(name, 0)) for name in _DEFAULT_OPERATIONS}
            for name, value in self._operations.items():
                if name not in operations:
                    operations[name] = int(value)
            errors = {code: int(value) for code, value in self._errors.items()}
            callbacks: dict[str, int] = {kind: int(self._callbacks.get(kind, 0)) for kind in _DEFAULT_CALLBACKS}
            for kind, value in self._callbacks.items():
                if kind not in callbacks:
                    callbacks[kind] = int(value)
            retries = self._retries
            uptime = max(monotonic() - self._started_at, 0.0)
        return MetricsSnapshot(
            operations=operations,
            errors=errors,
            callbacks=callbacks,
            retries=retries,
            uptime_seconds=uptime,
        )

    def reset(self) -> None:
        with self._lock:
            self._operations.clear()
            self._errors.clear()
            self._callbacks.clear()
            self._retries = 0
            self._started_at = monotonic()


def install_registry(registry: MetricsRegistry | None) -> None:
    """Install the active metrics registry (or disable metrics when None)."""

    with _registry_lock:
        global _registry
        _registry = registry


def get_registry_optional() -> MetricsRegistry | None:
    with _registry_lock:
        return _registry


def record_operation(name: str, *, count: int = 1) -> None:
    registry = get_registry_optional()
    if registry is not None:
        registry.record_operation(name, count=count)


def record_error(code: str, *, count: int = 1) -> None:
    registry = get_registry_optional()
    if registry is not None:
        registry.record_error(code, count=count)


def record_callback(kind: str, *, count: int = 1) -> None:
    registry = get_registry_optional()
    if registry is not None:
        registry.record_callback(kind, count=count)


def record_retry(*, count: int = 1) -> None:
    registry = get_registry_optional()
    if registry is not None:
        registry.record_retry(count=count)


def format_prometheus(snapshot: MetricsSnapshot, *, pending_requests: int) -> str:
    """Render metrics using Prometheus exposition format (text, version 0.0.4)."""

    lines: list[str] = []

    lines.append("# HELP drafts_mcp_ops_total Total Drafts operations executed by type.")
    lines.append("# TYPE drafts_mcp_ops_total counter")
    for name in sorted(snapshot.operations):
        value = snapshot.operations[name]
        lines.append(f'drafts_mcp_ops_total{{op="{name}"}} {value}')

    lines.append("# HELP drafts_mcp_errors_total Total errors returned, grouped by error code.")
    lines.append("# TYPE drafts_mcp_errors_total counter")
    if snapshot.errors:
        for code in sorted(snapshot.errors):
            value = snapshot.errors[code]
            lines.append(f'drafts_mcp_errors_total{{code="{code}"}} {value}')
    else:
        lines.append('drafts_mcp_errors_total{code="none"} 0')

    lines.append("# HELP drafts_mcp_callbacks_total Settled callback requests by outcome.")
    lines.append("# TYPE drafts_mcp_callbacks_total counter")
    for kind in sorted(snapshot.callbacks):
        value = snapshot.callbacks[kind]
        lines.append(f'drafts_mcp_callbacks_total{{kind="{kind}"}} {value}')

    lines.append("# HELP drafts_mcp_retries_total Invocation attempts retried after a failure.")
    lines.append("# TYPE drafts_mcp_retries_total counter")
    lines.append(f"drafts_mcp_retries_total {snapshot.retries}")

    lines.append("# HELP drafts_mcp_pending_requests Callback requests currently awaiting a response.")
    lines.append("# TYPE drafts_mcp_pending_requests gauge")
    lines.append(f"drafts_mcp_pending_requests {pending_requests}")

    lines.append("# HELP drafts_mcp_uptime_seconds Server uptime in seconds.")
    lines.append("# TYPE drafts_mcp_uptime_seconds gauge")
    lines.append(f"drafts_mcp_uptime_seconds {snapshot.uptime_seconds:.6f}")

    return "\n".join(lines) + "\n"
