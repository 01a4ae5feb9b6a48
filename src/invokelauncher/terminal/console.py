"""Singleton interactive shell session for the launcher console."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Callable
from concurrent.futures import Future
from pathlib import Path

from invokelauncher.config import DEFAULT_CONSOLE_HISTORY_SIZE
from invokelauncher.errors import ExitCode, LauncherError
from invokelauncher.host import HostPlatform, activate_script_path, default_bin_dir, detect_platform
from invokelauncher.install.details import InstallationDetails, get_installation_details
from invokelauncher.terminal.marker import MarkerCommandRunner, MarkerResult
from invokelauncher.terminal.models import PtyExit, Session, SessionRole
from invokelauncher.terminal.pty_backend import PtyBackend
from invokelauncher.terminal.shell import ShellFamily, default_shell, shell_syntax

logger = py_logging.getLogger(__name__)

ConsoleDataCallback = Callable[[str, str], None]
ConsoleExitCallback = Callable[[str, PtyExit], None]
DetailsProbe = Callable[[str], InstallationDetails]


class ConsoleManager:
    def __init__(
        self,
        backend: PtyBackend,
        *,
        host: HostPlatform | None = None,
        shell: tuple[str, ShellFamily] | None = None,
        history_size: int = DEFAULT_CONSOLE_HISTORY_SIZE,
        bin_dir: Path | None = None,
        details_probe: DetailsProbe | None = None,
        home: str | None = None,
    ) -> None:
        self._backend = backend
        self.host = host or detect_platform()
        self.shell, self.family = shell or default_shell(self.host)
        self.syntax = shell_syntax(self.family)
        self.history_size = history_size
        self.bin_dir = bin_dir or default_bin_dir()
        self._details_probe = details_probe or (lambda path: get_installation_details(path, host=self.host))
        self.home = home or str(Path.home())
        self._session: Session | None = None
        self._marker_runner: MarkerCommandRunner | None = None

    def create_console(
        self,
        *,
        on_data: ConsoleDataCallback,
        on_exit: ConsoleExitCallback,
        cwd: str | None = None,
        cols: int | None = None,
        rows: int | None = None,
    ) -> str:
        if self._session is not None:
            self.dispose()

        def _handle_exit(session_id: str, exit_info: PtyExit) -> None:
            if self._session is not None and self._session.id == session_id:
                self._session = None
                self._marker_runner = None
            suffix = f", signal: {exit_info.signal}" if exit_info.signaled else ""
            on_data(session_id, f"Process exited with code {exit_info.exit_code}{suffix}")
            on_exit(session_id, exit_info)

        session = self._backend.create(
            SessionRole.CONSOLE,
            self.shell,
            [],
            cwd=self.home,
            cols=cols,
            rows=rows,
            on_data=on_data,
            on_exit=_handle_exit,
            history_size=self.history_size,
        )
        self._session = session
        self._marker_runner = MarkerCommandRunner(self._backend, session.id, self.syntax)
        self._initialize(session, cwd)
        logger.info("console-create id=%s shell=%s cwd=%s", session.id, self.shell, cwd or self.home)
        return session.id

    def _initialize(self, session: Session, cwd: str | None) -> None:
        lines = [self.syntax.prepend_path(str(self.bin_dir))]
        if cwd:
            details = self._details_probe(cwd)
            if details.is_installed:
                lines.append(self.syntax.activate(str(activate_script_path(details.path, self.host))))
            if details.is_directory:
                lines.append(self.syntax.change_directory(cwd))
        for line in lines:
            self._backend.write(session.id, line + self.syntax.line_ending)

    def write(self, data: str) -> None:
        if self._session is not None:
            self._backend.write(self._session.id, data)

    def resize(self, cols: int, rows: int) -> None:
        if self._session is not None:
            self._backend.resize(self._session.id, cols, rows)

    def replay(self) -> str | None:
        if self._session is None:
            return None
        return self._backend.replay(self._session.id)

    def run_command(self, command: str, *, timeout: float | None = None) -> Future[MarkerResult]:
        if self._marker_runner is None:
            raise LauncherError(
                "No console session is active.",
                code=ExitCode.VALIDATION_ERROR,
                hint="Create a console before running commands.",
            )
        return self._marker_runner.run(command, timeout=timeout)

    def dispose(self) -> None:
        session = self._session
        runner = self._marker_runner
        self._session = None
        self._marker_runner = None
        if runner is not None:
            runner.close()
        if session is not None:
            self._backend.dispose(session.id)

    @property
    def console_id(self) -> str | None:
        return self._session.id if self._session else None

    def list_ids(self) -> list[str]:
        return [self._session.id] if self._session else []

    def is_active(self) -> bool:
        return self._session is not None
