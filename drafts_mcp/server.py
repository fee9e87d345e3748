"""FastMCP server entrypoint for the Drafts MCP service."""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import wraps
from typing import Annotated, Any, AsyncIterator, Mapping

from fastmcp import FastMCP
from fastmcp.exceptions import ResourceError
from pydantic import Field

from . import metrics
from .callbacks import CallbackServer
from .client import DraftsClient, Launcher
from .config import Config, load_config
from .database import DraftsDatabase
from .errors import CONFIG_ERROR, NOT_FOUND, DraftsError
from .logging import configure_logging, get_logger
from .models import CreateFolder, SearchFolder, StoreFolder
from .transports import run_stdio

LOGGER = get_logger(__name__)


@dataclass(slots=True)
class AppState:
    config: Config
    callbacks: CallbackServer
    client: DraftsClient
    database: DraftsDatabase


APP_STATE: AppState | None = None


@asynccontextmanager
async def _lifespan(_server: FastMCP) -> AsyncIterator[None]:
    """Run the callback listener for as long as the MCP server is serving."""

    state = APP_STATE
    if state is None:
        yield
        return
    await state.callbacks.start()
    try:
        yield
    finally:
        await state.callbacks.stop()


SERVER = FastMCP(name="drafts-mcp", lifespan=_lifespan)


def initialize_app(config: Config, *, launcher: Launcher | None = None) -> AppState:
    """Initialise application state for tool handlers.

    The callback listener is created here but only bound by the server
    lifespan (or explicitly via ``APP_STATE.callbacks.start()``).
    """

    global APP_STATE
    callbacks = CallbackServer(
        host=config.callback_host,
        public_host=config.callback_public_host,
        request_timeout=config.callback_timeout,
        enable_metrics=config.enable_metrics,
    )
    client = DraftsClient(
        callbacks,
        max_retries=config.max_retries,
        retry_delay=config.retry_delay,
        scheme=config.url_scheme,
        open_command=config.open_command,
        launcher=launcher,
    )
    database = DraftsDatabase(config.db_path)
    metrics.install_registry(metrics.MetricsRegistry())
    APP_STATE = AppState(config=config, callbacks=callbacks, client=client, database=database)
    LOGGER.info(
        "app.initialized",
        extra={"context": {"db_path": str(config.db_path), **client.describe()}},
    )
    return APP_STATE


def shutdown_app() -> None:
    """Clear application state. The callback listener is stopped by the lifespan."""

    global APP_STATE
    if APP_STATE is None:
        return
    if APP_STATE.callbacks.is_running:
        LOGGER.warning("shutdown.callbacks_still_running", extra={"context": {"port": APP_STATE.callbacks.port}})
    metrics.install_registry(None)
    APP_STATE = None


def _require_state() -> AppState:
    if APP_STATE is None:
        raise DraftsError(CONFIG_ERROR, "Server is not initialised")
    return APP_STATE


def get_client() -> DraftsClient:
    return _require_state().client


def get_database() -> DraftsDatabase:
    return _require_state().database


def success(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {"ok": True, **payload}


def failure(error: DraftsError) -> dict[str, Any]:
    metrics.record_error(error.code)
    return {"ok": False, "error": error.to_dict()}


def _drafts_error_guard(func):
    """Convert DraftsError exceptions into structured failure responses."""

    if not asyncio.iscoroutinefunction(func):
        raise TypeError("tool handlers must be coroutines")

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except DraftsError as exc:
            LOGGER.info(
                "tool.failed",
                extra={"context": {"tool": func.__name__, "code": exc.code, "error": exc.message}},
            )
            return failure(exc)

    return wrapper


DraftUuid = Annotated[str, Field(min_length=1, description="The UUID of the draft")]


@_drafts_error_guard
async def _create_draft_impl(
    text: Annotated[str, Field(description="The content of the draft")],
    tags: Annotated[list[str] | None, Field(description="Tags to add to the draft")] = None,
    action: Annotated[str | None, Field(description="Action to run on the draft after creation")] = None,
    folder: Annotated[CreateFolder | None, Field(description="Folder to place the draft in")] = None,
) -> dict[str, Any]:
    client = get_client()
    draft_uuid = await client.create_draft(text, tags=tags, action=action, folder=folder)
    metrics.record_operation("create")
    payload: dict[str, Any] = {"message": "Draft created successfully"}
    if draft_uuid:
        payload["uuid"] = draft_uuid
    return success(payload)


@_drafts_error_guard
async def _get_draft_impl(
    uuid: Annotated[str, Field(min_length=1, description="The UUID of the draft to retrieve")],
) -> dict[str, Any]:
    client = get_client()
    draft = await client.get_draft(uuid)
    metrics.record_operation("get")
    return success({"draft": draft.to_dict()})


@_drafts_error_guard
async def _get_all_drafts_impl(
    folder: Annotated[StoreFolder | None, Field(description="Filter by folder")] = None,
    flagged: Annotated[bool | None, Field(description="Filter by flagged status")] = None,
) -> dict[str, Any]:
    database = get_database()
    drafts = await database.get_all_drafts(folder=folder, flagged=flagged)
    metrics.record_operation("list")
    return success({"drafts": [draft.to_dict() for draft in drafts], "count": len(drafts)})


@_drafts_error_guard
async def _search_drafts_db_impl(
    query: Annotated[str, Field(min_length=1, description="Search text in draft content and titles")],
) -> dict[str, Any]:
    database = get_database()
    drafts = await database.search_drafts(query)
    metrics.record_operation("search_db")
    return success({"drafts": [draft.to_dict() for draft in drafts], "count": len(drafts)})


@_drafts_error_guard
async def _get_draft_content_impl(uuid: DraftUuid) -> dict[str, Any]:
    database = get_database()
    content = await database.get_draft_content(uuid)
    if content is None:
        raise DraftsError(NOT_FOUND, f"Draft {uuid} not found", details={"uuid": uuid})
    metrics.record_operation("content")
    return success({"uuid": uuid, "content": content})


@_drafts_error_guard
async def _append_to_draft_impl(
    uuid: DraftUuid,
    text: Annotated[str, Field(description="Text to append to the draft")],
) -> dict[str, Any]:
    await get_client().append_to_draft(uuid, text)
    metrics.record_operation("append")
    return success({"message": "Text appended successfully", "uuid": uuid})


@_drafts_error_guard
async def _prepend_to_draft_impl(
    uuid: DraftUuid,
    text: Annotated[str, Field(description="Text to prepend to the draft")],
) -> dict[str, Any]:
    await get_client().prepend_to_draft(uuid, text)
    metrics.record_operation("prepend")
    return success({"message": "Text prepended successfully", "uuid": uuid})


@_drafts_error_guard
async def _open_draft_impl(
    uuid: Annotated[str | None, Field(min_length=1, description="The UUID of the draft to open")] = None,
    title: Annotated[str | None, Field(min_length=1, description="The title of the draft to open")] = None,
) -> dict[str, Any]:
    await get_client().open_draft(uuid=uuid, title=title)
    metrics.record_operation("open")
    return success({"message": "Draft opened in Drafts app"})


@_drafts_error_guard
async def _run_action_impl(
    action: Annotated[str, Field(min_length=1, description="The name of the action to run")],
    text: Annotated[str, Field(description="Text to run the action on")],
) -> dict[str, Any]:
    await get_client().run_action(action, text)
    metrics.record_operation("run_action")
    return success({"message": "Action executed successfully", "action": action})


@_drafts_error_guard
async def _search_drafts_impl(
    query: Annotated[str | None, Field(description="Search query")] = None,
    tag: Annotated[str | None, Field(description="Filter by tag")] = None,
    folder: Annotated[SearchFolder | None, Field(description="Filter by folder")] = None,
) -> dict[str, Any]:
    await get_client().search_drafts(query=query, tag=tag, folder=folder)
    metrics.record_operation("search")
    return success({"message": "Search opened in Drafts app"})


async def _draft_resource_impl(uuid: str) -> str:
    try:
        draft = await get_client().get_draft(uuid)
    except DraftsError as exc:
        metrics.record_error(exc.code)
        raise ResourceError(exc.message) from exc
    return json.dumps(draft.to_dict(), indent=2)


# Input schemas come from the annotated handler signatures.
SERVER.tool(
    name="create_draft",
    description="Create a new draft in Drafts app with the specified content, tags, and optional action",
)(_create_draft_impl)
SERVER.tool(name="get_draft", description="Retrieve a draft by its UUID")(_get_draft_impl)
SERVER.tool(
    name="get_all_drafts",
    description="Get a list of all drafts with metadata by reading from local Drafts database",
)(_get_all_drafts_impl)
SERVER.tool(
    name="search_drafts_db",
    description="Search drafts by text content in the local database",
)(_search_drafts_db_impl)
SERVER.tool(
    name="get_draft_content",
    description="Read the text of a draft from the local database without opening Drafts",
)(_get_draft_content_impl)
SERVER.tool(name="append_to_draft", description="Append text to an existing draft")(_append_to_draft_impl)
SERVER.tool(name="prepend_to_draft", description="Prepend text to an existing draft")(_prepend_to_draft_impl)
SERVER.tool(name="open_draft", description="Open a draft in the Drafts app by UUID or title")(_open_draft_impl)
SERVER.tool(name="run_action", description="Run a Drafts action on specified text")(_run_action_impl)
SERVER.tool(
    name="search_drafts",
    description="Open the Drafts search interface with optional filters (opens UI)",
)(_search_drafts_impl)
SERVER.resource(
    "draft://uuid/{uuid}",
    name="Draft by UUID",
    description="Retrieve a specific draft by its UUID",
    mime_type="application/json",
)(_draft_resource_impl)


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for running the Drafts MCP server."""

    configure_logging()
    config = load_config(argv)
    configure_logging(config.log_level)
    LOGGER.info(
        "Configuration loaded",
        extra={
            "context": {
                "db_path": str(config.db_path),
                "url_scheme": config.url_scheme,
                "callback_timeout_seconds": config.callback_timeout.total_seconds(),
                "max_retries": config.max_retries,
                "enable_metrics": config.enable_metrics,
            }
        },
    )

    initialize_app(config)
    try:
        run_stdio(SERVER)
    except KeyboardInterrupt:
        LOGGER.info("Interrupted, shutting down")
    finally:
        shutdown_app()


if __name__ == "__main__":  # pragma: no cover - manual invocation only
    main()
