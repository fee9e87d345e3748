"""Domain models for drafts and callback outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, get_args

CreateFolder = Literal["inbox", "archive"]
SearchFolder = Literal["inbox", "archive", "flagged", "trash", "all"]
StoreFolder = Literal["inbox", "archive", "trash", "all"]

CREATE_FOLDERS: tuple[str, ...] = get_args(CreateFolder)
SEARCH_FOLDERS: tuple[str, ...] = get_args(SearchFolder)
STORE_FOLDERS: tuple[str, ...] = get_args(StoreFolder)

UNKNOWN_ERROR = "Unknown error"
USER_CANCELLED = "User cancelled"


def split_tags(value: str | None) -> list[str]:
    """Split a comma separated tag list, dropping blank entries."""

    if not value:
        return []
    return [tag.strip() for tag in value.split(",") if tag.strip()]


def parse_flag(value: str | None) -> bool:
    return value == "true"


def first_line(text: str) -> str:
    return text.split("\n", 1)[0] if text else ""


@dataclass(slots=True, frozen=True)
class CallbackUrls:
    """Success, error and cancel endpoints for one request id."""

    success: str
    error: str
    cancel: str


@dataclass(slots=True, frozen=True)
class CallbackOutcome:
    """Settled result of one x-callback-url round trip."""

    success: bool
    data: Mapping[str, str] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def ok(cls, data: Mapping[str, str]) -> "CallbackOutcome":
        return cls(success=True, data=dict(data))

    @classmethod
    def failed(cls, reason: str) -> "CallbackOutcome":
        return cls(success=False, error=reason)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": dict(self.data)}
        return {"success": False, "error": self.error}


@dataclass(slots=True)
class DraftMetadata:
    """Listing view of a draft, as read from the local store."""

    uuid: str
    title: str
    tags: list[str] = field(default_factory=list)
    created_at: str = ""
    modified_at: str = ""
    is_flagged: bool = False
    is_archived: bool = False
    is_trashed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "uuid": self.uuid,
            "title": self.title,
            "tags": list(self.tags),
            "createdAt": self.created_at,
            "modifiedAt": self.modified_at,
            "isFlagged": self.is_flagged,
            "isArchived": self.is_archived,
            "isTrashed": self.is_trashed,
        }


@dataclass(slots=True)
class Draft(DraftMetadata):
    """Full draft including its text content."""

    content: str = ""

    @classmethod
    def from_callback(cls, uuid: str, data: Mapping[str, str]) -> "Draft":
        """Rebuild a draft from the query parameters of a ``get`` callback."""

        content = data.get("text") or ""
        return cls(
            uuid=uuid,
            title=data.get("title") or first_line(content),
            tags=split_tags(data.get("tags")),
            created_at=data.get("createdAt") or "",
            modified_at=data.get("modifiedAt") or "",
            is_flagged=parse_flag(data.get("flagged")),
            is_archived=parse_flag(data.get("archived")),
            is_trashed=parse_flag(data.get("trashed")),
            content=content,
        )

    def to_dict(self) -> dict[str, Any]:
        payload = DraftMetadata.to_dict(self)
        payload["content"] = self.content
        return payload
