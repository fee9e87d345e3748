from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from drafts_mcp.database import DraftsDatabase, cocoa_to_iso
from drafts_mcp.errors import DATABASE_ERROR, VALIDATION_ERROR, DraftsError

# uuid, title, content, tags, created, modified, flagged, folder
ROWS = [
    ("A-1", "Groceries", "Groceries\nmilk", "home,errands", 700000000.0, 700000100.0, 1, 0),
    ("A-2", None, "Meeting notes\nagenda item", "work", 700000200.0, 700000300.0, 0, 1),
    ("A-3", "", "Old idea", None, 700000400.0, 700000500.0, 0, 2),
    ("A-4", "Flagged archive", "milk run", "", 700000600.0, 700000700.0, 1, 1),
]


@pytest.fixture
def store(tmp_path: Path) -> Path:
    path = tmp_path / "DraftStore.sqlite"
    conn = sqlite3.connect(path)
    try:
        conn.execute(
            """
            CREATE TABLE ZMANAGEDDRAFT (
                Z_PK INTEGER PRIMARY KEY,
                ZUUID VARCHAR,
                ZTITLE VARCHAR,
                ZCONTENT VARCHAR,
                ZCACHED_TAGS VARCHAR,
                ZCREATED_AT TIMESTAMP,
                ZMODIFIED_AT TIMESTAMP,
                ZFLAGGED INTEGER,
                ZFOLDER INTEGER
            )
            """
        )
        conn.executemany(
            "INSERT INTO ZMANAGEDDRAFT (ZUUID, ZTITLE, ZCONTENT, ZCACHED_TAGS, ZCREATED_AT, ZMODIFIED_AT, ZFLAGGED, ZFOLDER)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            ROWS,
        )
        conn.commit()
    finally:
        conn.close()
    return path


def test_cocoa_timestamps_convert_to_utc_iso() -> None:
    assert cocoa_to_iso(0) == "2001-01-01T00:00:00.000Z"
    assert cocoa_to_iso(86400.5) == "2001-01-02T00:00:00.500Z"
    assert cocoa_to_iso(None) == ""


def test_list_all_drafts_newest_first(store: Path) -> None:
    drafts = DraftsDatabase(store).list_drafts()

    assert [draft.uuid for draft in drafts] == ["A-4", "A-3", "A-2", "A-1"]


def test_metadata_mapping(store: Path) -> None:
    by_uuid = {draft.uuid: draft for draft in DraftsDatabase(store).list_drafts(folder="all")}

    groceries = by_uuid["A-1"]
    assert groceries.title == "Groceries"
    assert groceries.tags == ["home", "errands"]
    assert groceries.is_flagged is True
    assert groceries.is_archived is False
    assert groceries.created_at == cocoa_to_iso(700000000.0)

    assert by_uuid["A-2"].title == "Meeting notes"
    assert by_uuid["A-2"].is_archived is True
    assert by_uuid["A-3"].title == "Old idea"
    assert by_uuid["A-3"].is_trashed is True
    assert by_uuid["A-3"].tags == []


@pytest.mark.parametrize(
    ("folder", "flagged", "expected"),
    [
        ("inbox", None, ["A-1"]),
        ("archive", None, ["A-4", "A-2"]),
        ("trash", None, ["A-3"]),
        (None, True, ["A-4", "A-1"]),
        ("archive", False, ["A-2"]),
    ],
)
def test_list_filters(store: Path, folder: str | None, flagged: bool | None, expected: list[str]) -> None:
    drafts = DraftsDatabase(store).list_drafts(folder=folder, flagged=flagged)
    assert [draft.uuid for draft in drafts] == expected


def test_list_rejects_unknown_folder(store: Path) -> None:
    with pytest.raises(DraftsError) as excinfo:
        DraftsDatabase(store).list_drafts(folder="flagged")
    assert excinfo.value.code == VALIDATION_ERROR


def test_search_matches_content_and_title(store: Path) -> None:
    database = DraftsDatabase(store)

    assert [draft.uuid for draft in database.search("milk")] == ["A-4", "A-1"]
    assert [draft.uuid for draft in database.search("archive")] == ["A-4"]
    assert database.search("nothing like this") == []


def test_search_treats_quotes_as_text(store: Path) -> None:
    assert DraftsDatabase(store).search("' OR 1=1 --") == []


def test_content_lookup(store: Path) -> None:
    database = DraftsDatabase(store)

    assert database.content("A-2") == "Meeting notes\nagenda item"
    assert database.content("missing") is None


def test_missing_database_file(tmp_path: Path) -> None:
    with pytest.raises(DraftsError) as excinfo:
        DraftsDatabase(tmp_path / "absent.sqlite").list_drafts()
    assert excinfo.value.code == DATABASE_ERROR


def test_unexpected_schema_is_reported(tmp_path: Path) -> None:
    path = tmp_path / "other.sqlite"
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE something_else (id INTEGER)")
    conn.commit()
    conn.close()

    with pytest.raises(DraftsError) as excinfo:
        DraftsDatabase(path).search("x")
    assert excinfo.value.code == DATABASE_ERROR


def test_store_is_opened_read_only(store: Path) -> None:
    database = DraftsDatabase(store)
    conn = database._connect()
    try:
        with pytest.raises(sqlite3.OperationalError):
            conn.execute("DELETE FROM ZMANAGEDDRAFT")
    finally:
        conn.close()


@pytest.mark.asyncio
async def test_async_wrappers(store: Path) -> None:
    database = DraftsDatabase(store)

    assert len(await database.get_all_drafts(folder="archive")) == 2
    assert [draft.uuid for draft in await database.search_drafts("agenda")] == ["A-2"]
    assert await database.get_draft_content("A-3") == "Old idea"


def test_path_with_uri_characters(store: Path, tmp_path: Path) -> None:
    odd_dir = tmp_path / "Drafts 100% #1?mode=rw"
    odd_dir.mkdir()
    odd_store = odd_dir / "DraftStore.sqlite"
    odd_store.write_bytes(store.read_bytes())

    database = DraftsDatabase(odd_store)

    assert [draft.uuid for draft in database.list_drafts(folder="inbox")] == ["A-1"]
    conn = database._connect()
    try:
        with pytest.raises(sqlite3.OperationalError):
            conn.execute("DELETE FROM ZMANAGEDDRAFT")
    finally:
        conn.close()
