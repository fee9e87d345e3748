from drafts_mcp.errors import CALLBACK_TIMEOUT, DATABASE_ERROR, EXTERNAL_FAILURE, SHUTTING_DOWN, DraftsError
from drafts_mcp.models import CallbackOutcome, Draft, DraftMetadata, first_line, parse_flag, split_tags


def test_split_tags() -> None:
    assert split_tags("a, b ,,c") == ["a", "b", "c"]
    assert split_tags("") == []
    assert split_tags(None) == []


def test_parse_flag_only_accepts_literal_true() -> None:
    assert parse_flag("true") is True
    assert parse_flag("TRUE") is False
    assert parse_flag("1") is False
    assert parse_flag(None) is False


def test_first_line() -> None:
    assert first_line("title\nbody") == "title"
    assert first_line("single") == "single"
    assert first_line("") == ""


def test_outcome_serialisation() -> None:
    assert CallbackOutcome.ok({"uuid": "1"}).to_dict() == {"success": True, "data": {"uuid": "1"}}
    assert CallbackOutcome.failed("nope").to_dict() == {"success": False, "error": "nope"}


def test_draft_from_callback_prefers_explicit_title() -> None:
    draft = Draft.from_callback("U", {"text": "first\nsecond", "title": "Named"})

    assert draft.title == "Named"
    assert draft.content == "first\nsecond"
    assert draft.tags == []


def test_draft_serialises_with_camel_case_keys() -> None:
    draft = Draft(uuid="U", title="T", tags=["x"], created_at="c", modified_at="m", is_flagged=True, content="body")

    assert draft.to_dict() == {
        "uuid": "U",
        "title": "T",
        "tags": ["x"],
        "createdAt": "c",
        "modifiedAt": "m",
        "isFlagged": True,
        "isArchived": False,
        "isTrashed": False,
        "content": "body",
    }
    assert "content" not in DraftMetadata(uuid="U", title="T").to_dict()


def test_error_retryability() -> None:
    assert DraftsError(CALLBACK_TIMEOUT, "t").retryable is True
    assert DraftsError(EXTERNAL_FAILURE, "e").retryable is True
    assert DraftsError(SHUTTING_DOWN, "s").retryable is False
    assert DraftsError(DATABASE_ERROR, "d").retryable is False


def test_error_to_dict_includes_details_only_when_present() -> None:
    assert DraftsError(EXTERNAL_FAILURE, "boom").to_dict() == {"code": EXTERNAL_FAILURE, "message": "boom"}
    assert DraftsError(EXTERNAL_FAILURE, "boom", details={"uuid": "U"}).to_dict()["details"] == {"uuid": "U"}
