"""Configuration loading utilities for the Drafts MCP server."""

from __future__ import annotations

import argparse
import json
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Sequence

from .database import DEFAULT_DB_PATH

ENV_PREFIX = "DRAFTS_MCP_"

BOOL_TRUE = {"1", "true", "t", "yes", "y", "on"}
BOOL_FALSE = {"0", "false", "f", "no", "n", "off"}
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_URL_SCHEME = "drafts"
DEFAULT_OPEN_COMMAND = "open"
DEFAULT_CALLBACK_HOST = "127.0.0.1"
DEFAULT_CALLBACK_PUBLIC_HOST = "localhost"
DEFAULT_CALLBACK_TIMEOUT = "30s"
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = "1000ms"
DEFAULT_LOG_LEVEL = "INFO"

T_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600}

ENV_FIELD_MAP = {
    "config_file": f"{ENV_PREFIX}CONFIG_FILE",
    "db_path": f"{ENV_PREFIX}DB_PATH",
    "url_scheme": f"{ENV_PREFIX}URL_SCHEME",
    "open_command": f"{ENV_PREFIX}OPEN_COMMAND",
    "callback_host": f"{ENV_PREFIX}CALLBACK_HOST",
    "callback_public_host": f"{ENV_PREFIX}CALLBACK_PUBLIC_HOST",
    "callback_timeout": f"{ENV_PREFIX}CALLBACK_TIMEOUT",
    "max_retries": f"{ENV_PREFIX}MAX_RETRIES",
    "retry_delay": f"{ENV_PREFIX}RETRY_DELAY",
    "enable_metrics": f"{ENV_PREFIX}ENABLE_METRICS",
    "log_level": f"{ENV_PREFIX}LOG_LEVEL",
}

DEFAULT_VALUES: dict[str, Any] = {
    "config_file": None,
    "db_path": str(DEFAULT_DB_PATH),
    "url_scheme": DEFAULT_URL_SCHEME,
    "open_command": DEFAULT_OPEN_COMMAND,
    "callback_host": DEFAULT_CALLBACK_HOST,
    "callback_public_host": DEFAULT_CALLBACK_PUBLIC_HOST,
    "callback_timeout": DEFAULT_CALLBACK_TIMEOUT,
    "max_retries": DEFAULT_MAX_RETRIES,
    "retry_delay": DEFAULT_RETRY_DELAY,
    "enable_metrics": False,
    "log_level": DEFAULT_LOG_LEVEL,
}


class ConfigError(ValueError):
    """Raised when configuration values are invalid."""


@dataclass(slots=True)
class Config:
    """Configuration model for the Drafts MCP server."""

    db_path: Path
    url_scheme: str
    open_command: str
    callback_host: str
    callback_public_host: str
    callback_timeout: timedelta
    max_retries: int
    retry_delay: timedelta
    enable_metrics: bool
    log_level: str
    config_file: Path | None = None


def load_config(
    argv: Sequence[str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from CLI arguments, environment variables, and optional file."""

    parser = _build_arg_parser()
    parsed = parser.parse_args(argv)
    cli_values = {k: v for k, v in vars(parsed).items() if v is not None}

    env_values = _extract_env_values(os.environ if environ is None else environ)

    config_path_value = cli_values.get("config_file") or env_values.get("config_file")
    file_values = _load_config_file(config_path_value)

    merged: dict[str, Any] = {}
    _merge_layer(merged, DEFAULT_VALUES)
    _merge_layer(merged, file_values)
    _merge_layer(merged, env_values)
    _merge_layer(merged, cli_values)

    config = _normalize_values(merged, config_path_value)

    _maybe_write_config_file(config)
    return config


def hot_reload_config(*_args: Any, **_kwargs: Any) -> None:
    """Explicitly prevent runtime configuration reloading."""

    raise ConfigError("Configuration can only be loaded during startup. Restart the server to apply changes.")


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="drafts-mcp",
        description="Drafts MCP server configuration flags.",
        add_help=False,
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("-h", "--help", action="help", help="Show this help message and exit.")
    parser.add_argument(
        "--config-file",
        dest="config_file",
        metavar="PATH",
        help="Path to a JSON configuration file. Default: none.",
    )
    parser.add_argument(
        "--db-path",
        dest="db_path",
        metavar="PATH",
        help=f"Drafts SQLite store to read from (default: {DEFAULT_DB_PATH}).",
    )
    parser.add_argument(
        "--url-scheme",
        dest="url_scheme",
        metavar="SCHEME",
        help=f"URL scheme registered by the Drafts app (default: {DEFAULT_URL_SCHEME}).",
    )
    parser.add_argument(
        "--open-command",
        dest="open_command",
        metavar="CMD",
        help=f"Executable used to open x-callback URLs (default: {DEFAULT_OPEN_COMMAND}).",
    )
    parser.add_argument(
        "--callback-host",
        dest="callback_host",
        metavar="HOST",
        help=f"Interface the callback listener binds to (default: {DEFAULT_CALLBACK_HOST}).",
    )
    parser.add_argument(
        "--callback-public-host",
        dest="callback_public_host",
        metavar="HOST",
        help=f"Host name embedded in callback URLs (default: {DEFAULT_CALLBACK_PUBLIC_HOST}).",
    )
    parser.add_argument(
        "--callback-timeout",
        dest="callback_timeout",
        metavar="DURATION",
        help=f"How long to wait for Drafts to call back (default: {DEFAULT_CALLBACK_TIMEOUT}).",
    )
    parser.add_argument(
        "--max-retries",
        dest="max_retries",
        metavar="INT",
        help=f"Retries after a failed Drafts invocation (default: {DEFAULT_MAX_RETRIES}).",
    )
    parser.add_argument(
        "--retry-delay",
        dest="retry_delay",
        metavar="DURATION",
        help=f"Delay between retries (default: {DEFAULT_RETRY_DELAY}).",
    )
    parser.add_argument(
        "--enable-metrics",
        dest="enable_metrics",
        metavar="BOOL",
        help="Expose Prometheus metrics at /metrics on the callback listener (default: false).",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        metavar="LEVEL",
        help=f"Log level: {', '.join(LOG_LEVELS)} (default: {DEFAULT_LOG_LEVEL}).",
    )
    return parser


def _extract_env_values(env: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field, env_name in ENV_FIELD_MAP.items():
        if env_name in env:
            values[field] = env[env_name]
    return values


def _load_config_file(path_value: str | Path | None) -> dict[str, Any]:
    if not path_value:
        return {}
    path = _parse_path(path_value, field="config_file")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file is not valid JSON: {path}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a JSON object")
    result: dict[str, Any] = {k: v for k, v in data.items() if k in DEFAULT_VALUES}
    result["config_file"] = str(path)
    return result


def _merge_layer(base: MutableMapping[str, Any], overrides: Mapping[str, Any]) -> None:
    for key, value in overrides.items():
        if value is None:
            continue
        base[key] = value


def _normalize_values(values: Mapping[str, Any], config_path_value: str | Path | None) -> Config:
    db_path = _parse_path(values["db_path"], field="db_path")

    url_scheme = _parse_token(values.get("url_scheme", DEFAULT_URL_SCHEME), field="url_scheme")
    open_command = _parse_token(values.get("open_command", DEFAULT_OPEN_COMMAND), field="open_command")
    callback_host = _parse_token(values.get("callback_host", DEFAULT_CALLBACK_HOST), field="callback_host")
    callback_public_host = _parse_token(
        values.get("callback_public_host", DEFAULT_CALLBACK_PUBLIC_HOST),
        field="callback_public_host",
    )

    callback_timeout = _parse_duration(
        values.get("callback_timeout", DEFAULT_CALLBACK_TIMEOUT),
        default_unit="s",
        field="callback_timeout",
    )
    if callback_timeout.total_seconds() <= 0:
        raise ConfigError("callback_timeout must be greater than zero")
    max_retries = _parse_int(values.get("max_retries", DEFAULT_MAX_RETRIES), field="max_retries", minimum=0)
    retry_delay = _parse_duration(values.get("retry_delay", DEFAULT_RETRY_DELAY), default_unit="ms", field="retry_delay")

    enable_metrics = _parse_bool(values.get("enable_metrics"), default=DEFAULT_VALUES["enable_metrics"])

    log_level = str(values.get("log_level", DEFAULT_LOG_LEVEL)).strip().upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of: {', '.join(LOG_LEVELS)}")

    config_file_path = _parse_optional_path(config_path_value, field="config_file")

    return Config(
        db_path=db_path,
        url_scheme=url_scheme,
        open_command=open_command,
        callback_host=callback_host,
        callback_public_host=callback_public_host,
        callback_timeout=callback_timeout,
        max_retries=max_retries,
        retry_delay=retry_delay,
        enable_metrics=enable_metrics,
        log_level=log_level,
        config_file=config_file_path,
    )


def _maybe_write_config_file(config: Config) -> None:
    path = config.config_file
    if path is None:
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        return

    payload = _serialize_config(config)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def _serialize_config(config: Config) -> dict[str, Any]:
    return {
        "config_file": str(config.config_file) if config.config_file else None,
        "db_path": str(config.db_path),
        "url_scheme": config.url_scheme,
        "open_command": config.open_command,
        "callback_host": config.callback_host,
        "callback_public_host": config.callback_public_host,
        "callback_timeout": _format_duration(config.callback_timeout, preferred_unit="s"),
        "max_retries": config.max_retries,
        "retry_delay": _format_duration(config.retry_delay, preferred_unit="ms"),
        "enable_metrics": config.enable_metrics,
        "log_level": config.log_level,
    }


def _format_duration(duration: timedelta, *, preferred_unit: str) -> str:
    total_ms = round(duration.total_seconds() * 1000)
    factor_ms = round(T_DURATION_UNITS.get(preferred_unit, 1) * 1000)
    if factor_ms and total_ms % factor_ms == 0:
        return f"{total_ms // factor_ms}{preferred_unit}"
    return f"{total_ms}ms"


def _parse_bool(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in BOOL_TRUE:
            return True
        if lowered in BOOL_FALSE:
            return False
    raise ConfigError(f"Invalid boolean value: {value!r}")


def _parse_int(value: Any, *, field: str, minimum: int | None = None, maximum: int | None = None) -> int:
    try:
        if isinstance(value, (int, float)):
            int_value = int(value)
        else:
            int_value = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid integer for {field}: {value!r}") from exc

    if minimum is not None and int_value < minimum:
        raise ConfigError(f"{field} must be >= {minimum}")
    if maximum is not None and int_value > maximum:
        raise ConfigError(f"{field} must be <= {maximum}")
    return int_value


def _parse_duration(value: Any, *, default_unit: str, field: str) -> timedelta:
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration for {field}: {value!r}")
    if isinstance(value, (int, float)):
        amount = float(value)
        if amount < 0:
            raise ConfigError(f"{field} must be positive")
        return timedelta(seconds=amount * T_DURATION_UNITS[default_unit])
    if not isinstance(value, str):
        raise ConfigError(f"Invalid duration for {field}: {value!r}")

    stripped = value.strip().lower()
    if not stripped:
        raise ConfigError(f"{field} may not be empty")

    unit = default_unit
    number_part = stripped
    # "ms" must be checked before the single-letter suffixes.
    for suffix in sorted(T_DURATION_UNITS, key=len, reverse=True):
        if stripped.endswith(suffix):
            unit = suffix
            number_part = stripped[: -len(suffix)]
            break
    if not number_part or not number_part.isdigit():
        raise ConfigError(f"{field} must be a non-negative integer optionally suffixed with ms, s, m, or h")
    return timedelta(seconds=int(number_part) * T_DURATION_UNITS[unit])


def _parse_token(value: Any, *, field: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ConfigError(f"{field} may not be empty")
    return text


def _parse_path(value: Any, *, field: str) -> Path:
    if isinstance(value, Path):
        return value.expanduser().resolve()
    if not isinstance(value, str):
        raise ConfigError(f"Invalid path for {field}: {value!r}")
    stripped = value.strip()
    if not stripped:
        raise ConfigError(f"{field} may not be empty")
    return Path(stripped).expanduser().resolve()


def _parse_optional_path(value: Any, *, field: str) -> Path | None:
    if value in (None, ""):
        return None
    return _parse_path(value, field=field)
