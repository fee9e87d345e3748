"""Centralized error codes and helper utilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

__all__ = [
    "VALIDATION_ERROR",
    "CALLBACK_TIMEOUT",
    "EXTERNAL_FAILURE",
    "SHUTTING_DOWN",
    "LAUNCH_FAILED",
    "DUPLICATE_REQUEST",
    "DATABASE_ERROR",
    "NOT_FOUND",
    "CONFIG_ERROR",
    "RETRYABLE_CODES",
    "DraftsError",
    "error_payload",
]

VALIDATION_ERROR = "VALIDATION_ERROR"
CALLBACK_TIMEOUT = "CALLBACK_TIMEOUT"
EXTERNAL_FAILURE = "EXTERNAL_FAILURE"
SHUTTING_DOWN = "SHUTTING_DOWN"
LAUNCH_FAILED = "LAUNCH_FAILED"
DUPLICATE_REQUEST = "DUPLICATE_REQUEST"
DATABASE_ERROR = "DATABASE_ERROR"
NOT_FOUND = "NOT_FOUND"
CONFIG_ERROR = "CONFIG_ERROR"

RETRYABLE_CODES = frozenset({CALLBACK_TIMEOUT, EXTERNAL_FAILURE, LAUNCH_FAILED})


@dataclass(slots=True)
class DraftsError(Exception):
    """Domain-specific exception carrying an error code and message."""

    code: str
    message: str
    details: Mapping[str, Any] | None = None

    def __str__(self) -> str:  # pragma: no cover - delegation to message
        return self.message

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    def to_dict(self) -> dict[str, Any]:
        return error_payload(self.code, self.message, details=self.details)


def error_payload(code: str, message: str, *, details: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Build a structured error payload used in tool responses."""

    payload: dict[str, Any] = {
        "code": code,
        "message": message,
    }
    if details:
        payload["details"] = dict(details)
    return payload
