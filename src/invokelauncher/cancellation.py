"""Cooperative cancellation token shared across a workflow run."""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Callable

from invokelauncher.errors import ExitCode, LauncherError

logger = py_logging.getLogger(__name__)


class CancelledError(LauncherError):
    def __init__(self, message: str = "Operation canceled.") -> None:
        super().__init__(message, code=ExitCode.CANCELED)


class CancellationToken:
    """One-way flag plus callbacks fired once when cancellation is requested.

    Callbacks registered after cancellation run immediately, so a step that
    spawns a process after the flag flipped still gets it terminated.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            _run_callback(callback)
        return True

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._remove(callback)
        _run_callback(callback)
        return lambda: None

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def _remove(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)


def _run_callback(callback: Callable[[], None]) -> None:
    try:
        callback()
    except Exception:
        logger.exception("cancel callback failed")
