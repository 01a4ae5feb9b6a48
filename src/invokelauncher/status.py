"""Timestamped status snapshots and per-role transition tables."""

from __future__ import annotations

import logging as py_logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from invokelauncher.errors import InvalidTransition

logger = py_logging.getLogger(__name__)


class InstallStatusType(str, Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    INSTALLING = "installing"
    CANCELING = "canceling"
    CANCELED = "canceled"
    COMPLETED = "completed"
    ERROR = "error"


class ApplicationStatusType(str, Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    RUNNING = "running"
    EXITING = "exiting"
    EXITED = "exited"
    ERROR = "error"
    WINDOW_CRASHED = "window-crashed"


INSTALL_TRANSITIONS: Mapping[str, frozenset[str]] = {
    "uninitialized": frozenset({"starting"}),
    "starting": frozenset({"installing", "canceling", "error"}),
    "installing": frozenset({"canceling", "completed", "error"}),
    "canceling": frozenset({"canceled", "error"}),
    "completed": frozenset({"starting"}),
    "canceled": frozenset({"starting"}),
    "error": frozenset({"starting"}),
}

# window-crashed is reachable only while the server process is still alive.
APPLICATION_TRANSITIONS: Mapping[str, frozenset[str]] = {
    "uninitialized": frozenset({"starting"}),
    "starting": frozenset({"running", "exiting", "exited", "error"}),
    "running": frozenset({"exiting", "exited", "error", "window-crashed"}),
    "window-crashed": frozenset({"running", "exiting", "exited", "error"}),
    "exiting": frozenset({"exited", "error"}),
    "exited": frozenset({"starting"}),
    "error": frozenset({"starting"}),
}


@dataclass(frozen=True)
class StatusError:
    message: str
    context: dict[str, Any] | None = None


@dataclass(frozen=True)
class ProcessStatus:
    type: str
    timestamp: float
    error: StatusError | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "timestamp": self.timestamp}
        payload.update(self.data)
        if self.error is not None:
            payload["error"] = {"message": self.error.message}
            if self.error.context is not None:
                payload["error"]["context"] = self.error.context
        return payload


def _state_name(state: str) -> str:
    return state.value if isinstance(state, Enum) else str(state)


StatusListener = Callable[[ProcessStatus], None]


class StatusTracker:
    """Holds the current status of one role and enforces its transition table."""

    def __init__(
        self,
        role: str,
        transitions: Mapping[str, frozenset[str]],
        *,
        on_change: StatusListener | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.role = role
        self._transitions = transitions
        self._on_change = on_change
        self._clock = clock
        self._lock = threading.RLock()
        self._status = ProcessStatus(type="uninitialized", timestamp=clock())

    @property
    def current(self) -> ProcessStatus:
        with self._lock:
            return self._status

    @property
    def type(self) -> str:
        return self.current.type

    def can_transition(self, target: str) -> bool:
        with self._lock:
            return _state_name(target) in self._allowed(self._status.type)

    def transition(
        self,
        target: str,
        *,
        error: StatusError | None = None,
        **data: Any,
    ) -> ProcessStatus:
        target_value = _state_name(target)
        with self._lock:
            current = self._status
            if target_value not in self._allowed(current.type):
                raise InvalidTransition(self.role, current.type, target_value)
            timestamp = max(self._clock(), current.timestamp + 1e-6)
            self._status = ProcessStatus(type=target_value, timestamp=timestamp, error=error, data=dict(data))
            status = self._status
            logger.debug("status role=%s %s -> %s", self.role, current.type, target_value)
            if self._on_change is not None:
                try:
                    self._on_change(status)
                except Exception:
                    logger.exception("status listener failed role=%s", self.role)
        return status

    def _allowed(self, current: str) -> set[str]:
        return set(self._transitions.get(current, ()))
