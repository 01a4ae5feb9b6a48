"""XDG config loading/saving."""

from __future__ import annotations

import os
import sys
from contextlib import suppress
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

DEFAULT_CONFIG_PATH = Path("~/.config/invokelauncher/config.toml").expanduser()
DEFAULT_HISTORY_SIZE = 1000
DEFAULT_CONSOLE_HISTORY_SIZE = 2000
DEFAULT_APP_PACKAGE = "invokeai"
UV_PATH_ENV = "INVOKELAUNCHER_UV"

_STRING_FIELDS = (
    "install_dir",
    "app_package",
    "uv_path",
    "last_running_url",
    "last_loopback_url",
    "last_lan_url",
)
_BOOL_FIELDS = ("server_mode", "enable_partial_loading")
_INT_FIELDS = ("history_size", "console_history_size")
_FLOAT_FIELDS = (
    "status_poll_interval_seconds",
    "metrics_interval_seconds",
    "pins_timeout_seconds",
    "kill_timeout_seconds",
)


class LauncherConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    install_dir: str = ""
    server_mode: bool = False
    enable_partial_loading: bool = False
    history_size: int = Field(default=DEFAULT_HISTORY_SIZE, ge=1, le=100_000)
    console_history_size: int = Field(default=DEFAULT_CONSOLE_HISTORY_SIZE, ge=1, le=100_000)
    status_poll_interval_seconds: float = Field(default=1.0, gt=0, le=60)
    metrics_interval_seconds: float = Field(default=30.0, gt=0, le=3600)
    pins_timeout_seconds: float = Field(default=20.0, gt=0, le=300)
    kill_timeout_seconds: float = Field(default=5.0, gt=0, le=120)
    app_package: str = DEFAULT_APP_PACKAGE
    uv_path: str = ""
    last_running_url: str = ""
    last_loopback_url: str = ""
    last_lan_url: str = ""

    @field_validator("app_package")
    @classmethod
    def _validate_package(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned or any(ch.isspace() for ch in cleaned):
            raise ValueError(f"Invalid application package: {value!r}")
        return cleaned


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _sanitize(raw: dict[str, object]) -> LauncherConfig:
    cfg = LauncherConfig()

    for name in _STRING_FIELDS:
        value = raw.get(name)
        if isinstance(value, str):
            with suppress(ValidationError):
                setattr(cfg, name, value)

    for name in _BOOL_FIELDS:
        value = raw.get(name)
        if isinstance(value, bool):
            setattr(cfg, name, value)

    for name in _INT_FIELDS:
        value = raw.get(name)
        if isinstance(value, int) and not isinstance(value, bool):
            with suppress(ValidationError):
                setattr(cfg, name, value)

    for name in _FLOAT_FIELDS:
        value = raw.get(name)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            with suppress(ValidationError):
                setattr(cfg, name, float(value))

    env_uv = os.getenv(UV_PATH_ENV, "").strip()
    if env_uv:
        cfg.uv_path = env_uv

    return cfg


def load_config(path: str | Path | None = None) -> LauncherConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return _sanitize({})
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return _sanitize({})
    if not isinstance(raw, dict):
        return _sanitize({})
    return _sanitize(raw)


def save_config(config: LauncherConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    fields = (*_STRING_FIELDS, *_BOOL_FIELDS, *_INT_FIELDS, *_FLOAT_FIELDS)
    lines = [f"{name} = {_toml_scalar(getattr(config, name))}" for name in fields]
    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved


def remember_running_endpoint(
    url: str,
    loopback_url: str,
    lan_url: str = "",
    path: str | Path | None = None,
) -> LauncherConfig:
    config = load_config(path)
    config.last_running_url = url
    config.last_loopback_url = loopback_url
    config.last_lan_url = lan_url
    save_config(config, path)
    return config
