from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import pytest

from drafts_mcp.config import ConfigError, hot_reload_config, load_config
from drafts_mcp.database import DEFAULT_DB_PATH


def test_defaults_without_any_sources() -> None:
    config = load_config([], environ={})

    assert config.db_path == DEFAULT_DB_PATH.resolve()
    assert config.url_scheme == "drafts"
    assert config.open_command == "open"
    assert config.callback_host == "127.0.0.1"
    assert config.callback_public_host == "localhost"
    assert config.callback_timeout == timedelta(seconds=30)
    assert config.max_retries == 3
    assert config.retry_delay == timedelta(milliseconds=1000)
    assert config.enable_metrics is False
    assert config.log_level == "INFO"
    assert config.config_file is None


def test_cli_overrides_environment(tmp_path: Path) -> None:
    env = {
        "DRAFTS_MCP_MAX_RETRIES": "5",
        "DRAFTS_MCP_RETRY_DELAY": "2s",
        "DRAFTS_MCP_LOG_LEVEL": "debug",
    }
    config = load_config(["--max-retries", "1", "--db-path", str(tmp_path / "store.sqlite")], environ=env)

    assert config.max_retries == 1
    assert config.retry_delay == timedelta(seconds=2)
    assert config.log_level == "DEBUG"
    assert config.db_path == (tmp_path / "store.sqlite").resolve()


def test_environment_overrides_file(tmp_path: Path) -> None:
    config_path = tmp_path / "drafts.json"
    config_path.write_text(
        json.dumps({"callback_timeout": "45s", "url_scheme": "drafts5", "unknown_key": 1}),
        encoding="utf-8",
    )
    env = {"DRAFTS_MCP_CONFIG_FILE": str(config_path), "DRAFTS_MCP_URL_SCHEME": "drafts-beta"}

    config = load_config([], environ=env)

    assert config.callback_timeout == timedelta(seconds=45)
    assert config.url_scheme == "drafts-beta"
    assert config.config_file == config_path.resolve()


def test_missing_config_file_is_written_with_effective_values(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "drafts.json"

    config = load_config(["--config-file", str(config_path), "--retry-delay", "250"], environ={})

    assert config.retry_delay == timedelta(milliseconds=250)
    written = json.loads(config_path.read_text(encoding="utf-8"))
    assert written["retry_delay"] == "250ms"
    assert written["callback_timeout"] == "30s"
    assert written["max_retries"] == 3


def test_existing_config_file_is_not_rewritten(tmp_path: Path) -> None:
    config_path = tmp_path / "drafts.json"
    config_path.write_text(json.dumps({"max_retries": 0}), encoding="utf-8")

    config = load_config(["--config-file", str(config_path)], environ={})

    assert config.max_retries == 0
    assert json.loads(config_path.read_text(encoding="utf-8")) == {"max_retries": 0}


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("1500ms", timedelta(milliseconds=1500)),
        ("2m", timedelta(minutes=2)),
        ("1h", timedelta(hours=1)),
        ("10", timedelta(seconds=10)),
    ],
)
def test_callback_timeout_units(value: str, expected: timedelta) -> None:
    config = load_config(["--callback-timeout", value], environ={})
    assert config.callback_timeout == expected


@pytest.mark.parametrize(
    "argv",
    [
        ["--callback-timeout", "0s"],
        ["--callback-timeout", "soon"],
        ["--max-retries", "-1"],
        ["--max-retries", "many"],
        ["--retry-delay", "1.5s"],
        ["--enable-metrics", "maybe"],
        ["--log-level", "verbose"],
        ["--url-scheme", "  "],
    ],
)
def test_invalid_values_raise_config_error(argv: list[str]) -> None:
    with pytest.raises(ConfigError):
        load_config(argv, environ={})


def test_enable_metrics_from_environment() -> None:
    config = load_config([], environ={"DRAFTS_MCP_ENABLE_METRICS": "yes"})
    assert config.enable_metrics is True


def test_invalid_json_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "broken.json"
    config_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(["--config-file", str(config_path)], environ={})


def test_hot_reload_is_refused() -> None:
    with pytest.raises(ConfigError):
        hot_reload_config()
