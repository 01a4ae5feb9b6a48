"""Exit-code recovery for commands typed into an interactive shell session.

Direct spawns through :class:`~invokelauncher.terminal.command_runner.CommandRunner`
report exit codes natively and should be preferred. This module is the fallback
for a long-lived shell, where the only channel back is the terminal stream: the
command is wrapped so the shell echoes ``<marker>:<exit code>`` once it finishes,
and the stream is scanned for that token.
"""

from __future__ import annotations

import logging as py_logging
import re
import threading
import uuid
from concurrent.futures import Future
from dataclasses import dataclass, field

from invokelauncher.errors import ExitCode, LauncherError
from invokelauncher.terminal.models import PtyExit
from invokelauncher.terminal.pty_backend import PtyBackend
from invokelauncher.terminal.shell import ShellSyntax

logger = py_logging.getLogger(__name__)

MARKER_PREFIX = "__CMD_MARKER_"


@dataclass(frozen=True)
class MarkerResult:
    exit_code: int
    output: str


@dataclass
class CommandCompletion:
    marker: str
    pattern: re.Pattern[str]
    future: Future[MarkerResult]
    output: list[str] = field(default_factory=list)
    timer: threading.Timer | None = None


def new_marker() -> str:
    return f"{MARKER_PREFIX}{uuid.uuid4().hex}__"


class MarkerCommandRunner:
    """Tracks pending marker-wrapped commands for one shell session."""

    def __init__(
        self,
        backend: PtyBackend,
        session_id: str,
        syntax: ShellSyntax,
        *,
        default_timeout_seconds: float | None = None,
    ) -> None:
        self._backend = backend
        self.session_id = session_id
        self.syntax = syntax
        self.default_timeout_seconds = default_timeout_seconds
        self._lock = threading.Lock()
        self._pending: dict[str, CommandCompletion] = {}
        self._closed = False
        self._unsubscribe = backend.subscribe(session_id, on_data=self._on_data, on_exit=self._on_exit)
        if self._unsubscribe is None:
            self._closed = True

    def run(self, command: str, *, timeout: float | None = None) -> Future[MarkerResult]:
        future: Future[MarkerResult] = Future()
        future.set_running_or_notify_cancel()
        if self._closed:
            future.set_exception(
                LauncherError(
                    "Shell session is not running.",
                    code=ExitCode.PROCESS_ERROR,
                    hint="Create a new console session.",
                )
            )
            return future

        marker = new_marker()
        completion = CommandCompletion(
            marker=marker,
            pattern=re.compile(re.escape(marker) + r":(\d+)"),
            future=future,
        )
        resolved_timeout = self.default_timeout_seconds if timeout is None else timeout
        if resolved_timeout is not None:
            completion.timer = threading.Timer(resolved_timeout, self._expire, args=(marker,))
            completion.timer.daemon = True

        with self._lock:
            self._pending[marker] = completion
        if completion.timer is not None:
            completion.timer.start()

        line = self.syntax.wrap_with_marker(command, marker) + self.syntax.line_ending
        if not self._backend.write(self.session_id, line):
            self._settle(
                marker,
                error=LauncherError(
                    "Failed to write command to shell session.",
                    code=ExitCode.PROCESS_ERROR,
                ),
            )
        return future

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._closed = True
        self._reject_all("Shell session was disposed before the command completed.")

    def _on_data(self, data: str) -> None:
        with self._lock:
            pending = list(self._pending.values())
        for completion in pending:
            completion.output.append(data)
            buffered = "".join(completion.output)
            match = completion.pattern.search(buffered)
            if match is None:
                continue
            self._settle(
                completion.marker,
                result=MarkerResult(exit_code=int(match.group(1)), output=buffered[: match.start()]),
            )

    def _on_exit(self, exit_info: PtyExit) -> None:
        self._closed = True
        self._reject_all(f"Shell session exited with code {exit_info.exit_code} before the command completed.")

    def _expire(self, marker: str) -> None:
        logger.warning("marker-timeout session=%s marker=%s", self.session_id, marker)
        self._settle(
            marker,
            error=TimeoutError(f"Command did not report completion in time ({marker})."),
        )

    def _reject_all(self, message: str) -> None:
        with self._lock:
            markers = list(self._pending)
        for marker in markers:
            self._settle(marker, error=LauncherError(message, code=ExitCode.PROCESS_ERROR))

    def _settle(
        self,
        marker: str,
        *,
        result: MarkerResult | None = None,
        error: BaseException | None = None,
    ) -> None:
        with self._lock:
            completion = self._pending.pop(marker, None)
        if completion is None:
            return
        if completion.timer is not None:
            completion.timer.cancel()
        if completion.future.done():
            return
        if error is not None:
            completion.future.set_exception(error)
        else:
            completion.future.set_result(result)
