"""Deterministic error model and exit code contract."""

from __future__ import annotations

import traceback
from dataclasses import dataclass
from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    INSTALL_ERROR = 5
    PROCESS_ERROR = 6
    VALIDATION_ERROR = 7
    UNSUPPORTED_PLATFORM = 8
    CANCELED = 9


@dataclass
class LauncherError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


class InvalidTransition(LauncherError):
    """Raised when a status change is not a declared transition."""

    def __init__(self, role: str, current: str, target: str) -> None:
        super().__init__(
            f"Invalid {role} status transition: {current} -> {target}",
            code=ExitCode.VALIDATION_ERROR,
        )
        self.role = role
        self.current = current
        self.target = target


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."


def serialize_error(exc: BaseException, *, max_depth: int = 5) -> dict[str, object]:
    """Return a JSON-safe description of ``exc`` and its cause chain."""
    payload: dict[str, object] = {
        "name": type(exc).__name__,
        "message": str(exc),
    }
    if isinstance(exc, LauncherError):
        payload["code"] = int(exc.code)
        if exc.hint:
            payload["hint"] = exc.hint
    if exc.__traceback__ is not None:
        payload["stack"] = "".join(traceback.format_tb(exc.__traceback__)).strip()
    cause = exc.__cause__ or exc.__context__
    if cause is not None and max_depth > 0:
        payload["cause"] = serialize_error(cause, max_depth=max_depth - 1)
    return payload
