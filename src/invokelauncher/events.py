"""Topic-based event channel between the core and the display layer."""

from __future__ import annotations

import logging as py_logging
import threading
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from typing_extensions import TypedDict

logger = py_logging.getLogger(__name__)

EventHandler = Callable[[Any], None]

TERMINAL_OUTPUT_TOPIC = "terminal:output"
TERMINAL_EXITED_TOPIC = "terminal:exited"
METRICS_TOPIC = "metrics"


class TerminalOutputPayload(TypedDict):
    id: str
    data: str


class TerminalExitPayload(TypedDict):
    id: str
    exit_code: int | None
    signal: int | None


class LogEntryPayload(TypedDict):
    level: str
    message: str
    timestamp: float


def status_topic(role: str) -> str:
    return f"{role}:status"


def raw_output_topic(role: str) -> str:
    return f"{role}:raw-output"


def log_topic(role: str) -> str:
    return f"{role}:log"


def clear_logs_topic(role: str) -> str:
    return f"{role}:clear-logs"


class EventBus:
    """Synchronous fan-out of payloads to per-topic subscribers.

    Handlers run on the publishing thread; a failing handler is logged and
    does not prevent delivery to the rest.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: EventHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers[topic].append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(topic, [])
                if handler in handlers:
                    handlers.remove(handler)

        return _unsubscribe

    def publish(self, topic: str, payload: Any = None) -> None:
        with self._lock:
            handlers = list(self._handlers.get(topic, ()))
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                logger.exception("event handler failed topic=%s", topic)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._handlers.get(topic, ()))


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


_PY_LEVELS = {
    LogLevel.DEBUG: py_logging.DEBUG,
    LogLevel.INFO: py_logging.INFO,
    LogLevel.WARN: py_logging.WARNING,
    LogLevel.ERROR: py_logging.ERROR,
}


@dataclass(frozen=True)
class LogEntry:
    level: LogLevel
    message: str
    timestamp: float

    def to_dict(self) -> LogEntryPayload:
        return {"level": self.level.value, "message": self.message, "timestamp": self.timestamp}


class SessionLog:
    """Writes launcher messages inline into a session's output stream.

    Each message goes to the raw-output sink as-is, to the structured sink as
    a :class:`LogEntry` and to the Python logger.
    """

    def __init__(
        self,
        *,
        raw_output: Callable[[str], None] | None = None,
        entries: Callable[[LogEntry], None] | None = None,
        logger_name: str = __name__,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._raw_output = raw_output
        self._entries = entries
        self._logger = py_logging.getLogger(logger_name)
        self._clock = clock

    def log(self, level: LogLevel, message: str) -> LogEntry:
        entry = LogEntry(level=level, message=message, timestamp=self._clock())
        if self._raw_output is not None:
            self._raw_output(message)
        if self._entries is not None:
            self._entries(entry)
        self._logger.log(_PY_LEVELS[level], "%s", message.rstrip("\r\n"))
        return entry

    def debug(self, message: str) -> LogEntry:
        return self.log(LogLevel.DEBUG, message)

    def info(self, message: str) -> LogEntry:
        return self.log(LogLevel.INFO, message)

    def warn(self, message: str) -> LogEntry:
        return self.log(LogLevel.WARN, message)

    def error(self, message: str) -> LogEntry:
        return self.log(LogLevel.ERROR, message)
