"""Single-flight command execution on top of the PTY backend."""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, InvalidStateError
from concurrent.futures import wait as wait_futures
from contextlib import suppress
from dataclasses import dataclass

from invokelauncher.errors import ExitCode, LauncherError
from invokelauncher.terminal.models import PtyExit, Session, SessionRole
from invokelauncher.terminal.pty_backend import PtyBackend

logger = py_logging.getLogger(__name__)

DEFAULT_KILL_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class CommandResult:
    exit_code: int | None
    signal: int | None = None


@dataclass
class _ActiveCommand:
    session: Session
    future: Future[CommandResult]


class CommandRunner:
    """Runs exactly one foreground command per instance.

    Starting a new command first kills the active one and waits for its exit
    notification, so its future has settled before the next process starts.
    """

    def __init__(
        self,
        backend: PtyBackend,
        role: SessionRole,
        *,
        kill_timeout_seconds: float = DEFAULT_KILL_TIMEOUT_SECONDS,
    ) -> None:
        self._backend = backend
        self.role = role
        self.kill_timeout_seconds = kill_timeout_seconds
        self._lock = threading.Lock()
        self._active: _ActiveCommand | None = None
        self.cols: int | None = None
        self.rows: int | None = None

    def run_command(
        self,
        command: str,
        args: list[str] | None = None,
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        on_data: Callable[[str], None] | None = None,
        on_exit: Callable[[PtyExit], None] | None = None,
    ) -> Future[CommandResult]:
        if self.is_running():
            self.kill()

        future: Future[CommandResult] = Future()
        future.set_running_or_notify_cancel()

        def _handle_data(_session_id: str, data: str) -> None:
            if on_data is not None:
                on_data(data)

        def _handle_exit(session_id: str, exit_info: PtyExit) -> None:
            with self._lock:
                if self._active is not None and self._active.session.id == session_id:
                    self._active = None
            if on_exit is not None:
                try:
                    on_exit(exit_info)
                except Exception:
                    logger.exception("command on_exit callback failed")
            if not future.done():
                future.set_result(CommandResult(exit_code=exit_info.exit_code, signal=exit_info.signal))

        try:
            session = self._backend.create(
                self.role,
                command,
                list(args or []),
                cwd=cwd,
                env=env,
                cols=self.cols,
                rows=self.rows,
                on_data=_handle_data,
                on_exit=_handle_exit,
            )
        except Exception as exc:
            logger.error("command-start failed role=%s command=%s error=%s", self.role.value, command, exc)
            future.set_exception(exc)
            return future

        with self._lock:
            if not session.exited.is_set() and not future.done():
                self._active = _ActiveCommand(session=session, future=future)
        return future

    def kill(self, *, wait: bool = True, timeout: float | None = None) -> bool:
        """Terminate the active command; return True once the slot is free."""
        with self._lock:
            active = self._active
            self._active = None
        if active is None:
            return True

        self._backend.dispose(active.session.id)
        if not wait:
            return False
        resolved_timeout = self.kill_timeout_seconds if timeout is None else timeout
        done, _ = wait_futures([active.future], timeout=resolved_timeout)
        if done:
            return True
        logger.warning(
            "command-kill timed out role=%s pid=%s timeout=%s",
            self.role.value,
            active.session.pid,
            resolved_timeout,
        )
        with suppress(InvalidStateError):
            active.future.set_exception(
                LauncherError(
                    "Command did not exit after termination request.",
                    code=ExitCode.PROCESS_ERROR,
                    hint="The process may need to be stopped manually.",
                )
            )
        self._backend.force_kill(active.session)
        return False

    def resize(self, cols: int, rows: int) -> None:
        self.cols = cols
        self.rows = rows
        session = self.current_session()
        if session is not None:
            self._backend.resize(session.id, cols, rows)

    def write(self, data: str) -> None:
        session = self.current_session()
        if session is not None:
            self._backend.write(session.id, data)

    def current_session(self) -> Session | None:
        with self._lock:
            return self._active.session if self._active else None

    def is_running(self) -> bool:
        return self.current_session() is not None

    @property
    def pid(self) -> int | None:
        session = self.current_session()
        return session.pid if session else None

    def dispose(self) -> None:
        self.kill()
