"""Read-only access to the Drafts SQLite store."""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Sequence

from .errors import DATABASE_ERROR, VALIDATION_ERROR, DraftsError
from .logging import get_logger
from .models import STORE_FOLDERS, DraftMetadata, split_tags

__all__ = ["DraftsDatabase", "DEFAULT_DB_PATH", "cocoa_to_iso"]

LOGGER = get_logger(__name__)

DEFAULT_DB_PATH = (
    Path.home()
    / "Library"
    / "Group Containers"
    / "GTFQ98J4YG.com.agiletortoise.Drafts"
    / "DraftStore.sqlite"
)

# Core Data stores timestamps as seconds since 2001-01-01 00:00:00 UTC.
COCOA_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)

_FOLDER_CODES = {"inbox": 0, "archive": 1, "trash": 2}

_METADATA_COLUMNS = """
    ZUUID AS uuid,
    CASE
        WHEN ZTITLE IS NOT NULL AND ZTITLE != '' THEN ZTITLE
        WHEN INSTR(ZCONTENT, CHAR(10)) > 0 THEN SUBSTR(ZCONTENT, 1, INSTR(ZCONTENT, CHAR(10)) - 1)
        ELSE ZCONTENT
    END AS title,
    ZCACHED_TAGS AS tags,
    ZCREATED_AT AS created_at,
    ZMODIFIED_AT AS modified_at,
    ZFLAGGED AS flagged,
    ZFOLDER AS folder
"""


def cocoa_to_iso(timestamp: float | None) -> str:
    if timestamp is None:
        return ""
    moment = COCOA_EPOCH + timedelta(seconds=float(timestamp))
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _row_to_metadata(row: sqlite3.Row) -> DraftMetadata:
    folder = row["folder"]
    return DraftMetadata(
        uuid=row["uuid"],
        title=row["title"] or "",
        tags=split_tags(row["tags"]),
        created_at=cocoa_to_iso(row["created_at"]),
        modified_at=cocoa_to_iso(row["modified_at"]),
        is_flagged=row["flagged"] == 1,
        is_archived=folder == 1,
        is_trashed=folder == 2,
    )


class DraftsDatabase:
    """Query drafts from ``DraftStore.sqlite`` without touching the app."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        self._db_path = Path(db_path) if db_path is not None else DEFAULT_DB_PATH

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        if not self._db_path.exists():
            raise DraftsError(
                DATABASE_ERROR,
                f"Drafts database not found at {self._db_path}",
                details={"db_path": str(self._db_path)},
            )
        # as_uri() percent-encodes characters that are URI syntax in a raw path.
        conn = sqlite3.connect(f"{self._db_path.resolve().as_uri()}?mode=ro", uri=True)
        conn.row_factory = sqlite3.Row
        return conn

    def _fetch(self, sql: str, params: Sequence[Any]) -> list[sqlite3.Row]:
        try:
            conn = self._connect()
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            LOGGER.error("database.query_failed", extra={"context": {"db_path": str(self._db_path), "error": str(exc)}})
            raise DraftsError(
                DATABASE_ERROR,
                f"Failed to query Drafts database: {exc}",
                details={"db_path": str(self._db_path)},
            ) from exc

    def list_drafts(self, *, folder: str | None = None, flagged: bool | None = None) -> list[DraftMetadata]:
        conditions: list[str] = []
        params: list[Any] = []
        if folder is not None:
            if folder not in STORE_FOLDERS:
                raise DraftsError(
                    VALIDATION_ERROR,
                    f"folder must be one of: {', '.join(STORE_FOLDERS)}",
                    details={"folder": folder},
                )
            if folder != "all":
                conditions.append("ZFOLDER = ?")
                params.append(_FOLDER_CODES[folder])
        if flagged is not None:
            conditions.append("ZFLAGGED = ?")
            params.append(1 if flagged else 0)

        sql = f"SELECT {_METADATA_COLUMNS} FROM ZMANAGEDDRAFT"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY ZMODIFIED_AT DESC"
        return [_row_to_metadata(row) for row in self._fetch(sql, params)]

    def search(self, text: str) -> list[DraftMetadata]:
        pattern = f"%{text}%"
        sql = (
            f"SELECT {_METADATA_COLUMNS} FROM ZMANAGEDDRAFT"
            " WHERE ZCONTENT LIKE ? OR ZTITLE LIKE ?"
            " ORDER BY ZMODIFIED_AT DESC"
        )
        return [_row_to_metadata(row) for row in self._fetch(sql, (pattern, pattern))]

    def content(self, uuid: str) -> str | None:
        rows = self._fetch("SELECT ZCONTENT AS content FROM ZMANAGEDDRAFT WHERE ZUUID = ?", (uuid,))
        if not rows:
            return None
        return rows[0]["content"] or ""

    async def get_all_drafts(self, *, folder: str | None = None, flagged: bool | None = None) -> list[DraftMetadata]:
        return await asyncio.to_thread(self.list_drafts, folder=folder, flagged=flagged)

    async def search_drafts(self, text: str) -> list[DraftMetadata]:
        return await asyncio.to_thread(self.search, text)

    async def get_draft_content(self, uuid: str) -> str | None:
        return await asyncio.to_thread(self.content, uuid)
