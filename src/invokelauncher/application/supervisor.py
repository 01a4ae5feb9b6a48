"""Lifecycle supervision of the application server process."""

from __future__ import annotations

import logging as py_logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from pathlib import Path
from typing import Protocol

from invokelauncher.application.display import (
    DisplayCallbacks,
    DisplayFactory,
    DisplaySurface,
    crash_reason_message,
)
from invokelauncher.application.network import ALL_INTERFACES, RunningEndpoint, normalize_endpoint, primary_address
from invokelauncher.config import LauncherConfig
from invokelauncher.events import LogEntry, SessionLog
from invokelauncher.host import HostPlatform, detect_platform, first_run_marker_path
from invokelauncher.install.details import InstallationDetails, get_installation_details
from invokelauncher.status import (
    APPLICATION_TRANSITIONS,
    ApplicationStatusType,
    ProcessStatus,
    StatusError,
    StatusTracker,
)
from invokelauncher.terminal.command_runner import CommandResult
from invokelauncher.terminal.models import PtyExit
from invokelauncher.watcher import PatternWatcher, contains_any

logger = py_logging.getLogger(__name__)

READY_PATTERN = r"https?://[^:\s]+:\d+"
READY_MARKERS = ("Uvicorn running", "Invoke running")

_ACTIVE = frozenset(
    {
        ApplicationStatusType.STARTING.value,
        ApplicationStatusType.RUNNING.value,
        ApplicationStatusType.WINDOW_CRASHED.value,
        ApplicationStatusType.EXITING.value,
    }
)
_EXITABLE = frozenset(
    {
        ApplicationStatusType.STARTING.value,
        ApplicationStatusType.RUNNING.value,
        ApplicationStatusType.WINDOW_CRASHED.value,
    }
)


class ApplicationRunner(Protocol):
    def run_command(
        self,
        command: str,
        args: list[str] | None = None,
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        on_data: Callable[[str], None] | None = None,
        on_exit: Callable[[PtyExit], None] | None = None,
    ) -> Future[CommandResult]: ...

    def kill(self, *, wait: bool = True, timeout: float | None = None) -> bool: ...

    def is_running(self) -> bool: ...

    def resize(self, cols: int, rows: int) -> None: ...

    @property
    def pid(self) -> int | None: ...


def application_env(location: str, config: LauncherConfig, host: HostPlatform) -> dict[str, str]:
    env = {"INVOKEAI_ROOT": location}
    if config.server_mode:
        env["INVOKEAI_HOST"] = ALL_INTERFACES
    if config.enable_partial_loading:
        env["INVOKEAI_ENABLE_PARTIAL_LOADING"] = "1"
    # Some torch operations are not implemented on MPS yet.
    if host.is_macos:
        env["PYTORCH_ENABLE_MPS_FALLBACK"] = "1"
    return env


class ApplicationSupervisor:
    def __init__(
        self,
        runner: ApplicationRunner,
        *,
        config: LauncherConfig | None = None,
        host: HostPlatform | None = None,
        details_probe: Callable[[str], InstallationDetails] | None = None,
        display_factory: DisplayFactory | None = None,
        address_provider: Callable[[], str] = primary_address,
        save_endpoint: Callable[[RunningEndpoint], None] | None = None,
        on_status: Callable[[ProcessStatus], None] | None = None,
        on_raw_output: Callable[[str], None] | None = None,
        on_log: Callable[[LogEntry], None] | None = None,
        on_clear_logs: Callable[[], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._runner = runner
        self.config = config or LauncherConfig()
        self.host = host or detect_platform()
        self._details_probe = details_probe or (
            lambda path: get_installation_details(path, host=self.host, package=self.config.app_package)
        )
        self._display_factory = display_factory
        self._address_provider = address_provider
        self._save_endpoint = save_endpoint
        self._on_raw_output = on_raw_output
        self._on_clear_logs = on_clear_logs
        self._clock = clock
        self.log = SessionLog(raw_output=on_raw_output, entries=on_log, logger_name=__name__)
        self._status = StatusTracker("application", APPLICATION_TRANSITIONS, on_change=on_status)
        self._lock = threading.RLock()
        self._run_id = 0
        self._display: DisplaySurface | None = None
        self._unresponsive_since: float | None = None
        self.last_endpoint: RunningEndpoint | None = None

    def get_status(self) -> ProcessStatus:
        return self._status.current

    def is_active(self) -> bool:
        return self._status.type in _ACTIVE

    @property
    def pid(self) -> int | None:
        return self._runner.pid

    @property
    def display(self) -> DisplaySurface | None:
        return self._display

    def resize(self, cols: int, rows: int) -> None:
        self._runner.resize(cols, rows)

    def start(self, location: str) -> bool:
        with self._lock:
            if self.is_active():
                logger.info("application-start ignored status=%s", self._status.type)
                self.log.warn("Invoke is already running\r\n")
                return False
            self._run_id += 1
            run_id = self._run_id
            self.last_endpoint = None
            self._status.transition(ApplicationStatusType.STARTING)

        try:
            return self._launch(run_id, location)
        except Exception as exc:
            logger.exception("application-start unexpected failure location=%s", location)
            self.log.error(f"Failed to start Invoke process: {exc}\r\n")
            self._set_status(run_id, ApplicationStatusType.ERROR, error=StatusError(str(exc) or type(exc).__name__))
            return False

    def _launch(self, run_id: int, location: str) -> bool:
        if self._on_clear_logs is not None:
            self._on_clear_logs()

        details = self._details_probe(location)
        if not details.is_installed or not details.executable_path:
            self.log.error("Invalid installation!\r\n")
            self._set_status(run_id, ApplicationStatusType.ERROR, error=StatusError("Invalid installation!"))
            return False

        self._consume_first_run_marker(location)

        if self._runner.is_running():
            self._runner.kill()

        watcher = PatternWatcher(
            READY_PATTERN,
            lambda url: self._on_ready(run_id, url),
            chunk_filter=contains_any(*READY_MARKERS),
        )

        def _on_data(data: str) -> None:
            if self._on_raw_output is not None:
                self._on_raw_output(data)
            watcher.check_for_match(data)

        future = self._runner.run_command(
            details.executable_path,
            [],
            cwd=location,
            env=application_env(location, self.config, self.host),
            on_data=_on_data,
            on_exit=lambda exit_info: self._on_exit(run_id, exit_info),
        )
        future.add_done_callback(lambda done: self._on_settled(run_id, done))

        pid = self._runner.pid
        if pid:
            self.log.info(f"Started Invoke process with PID {pid}\r\n")
        return not future.done() or future.exception() is None

    def exit(self, *, wait: bool = False) -> None:
        with self._lock:
            if self._status.type not in _EXITABLE:
                logger.debug("application-exit ignored status=%s", self._status.type)
                return
            self.log.info("Shutting down...\r\n")
            self._status.transition(ApplicationStatusType.EXITING)
        self._close_display()
        if self._runner.is_running():
            self._runner.kill(wait=wait)

    def reopen_display(self) -> bool:
        if self._display is not None and self._display.is_open:
            self.log.warn("Window is already open\r\n")
            return False
        endpoint = self.last_endpoint
        if endpoint is None:
            self.log.error("Cannot reopen window - no running data available\r\n")
            return False
        if not self._runner.is_running():
            self.log.error("Cannot reopen window - process is not running\r\n")
            return False
        self.log.info("Reopening Invoke UI window...\r\n")
        self._open_display(endpoint)
        with self._lock:
            if self._status.can_transition(ApplicationStatusType.RUNNING):
                self._status.transition(ApplicationStatusType.RUNNING, **endpoint.to_dict())
        return True

    def _consume_first_run_marker(self, location: str) -> None:
        marker = first_run_marker_path(location)
        if not marker.exists():
            return
        self.log.info("Preparing first run of this install - may take a minute or two...\r\n")
        try:
            Path(marker).unlink()
        except OSError as exc:
            self.log.info(f"Could not remove first run marker: {exc}\r\n")

    def _on_ready(self, run_id: int, url: str) -> None:
        endpoint = normalize_endpoint(url, address_provider=self._address_provider)
        with self._lock:
            if run_id != self._run_id or self._status.type != ApplicationStatusType.STARTING.value:
                return
            self.last_endpoint = endpoint
            if not self.config.server_mode:
                self._open_display(endpoint)
            self._status.transition(ApplicationStatusType.RUNNING, **endpoint.to_dict())
        if self._save_endpoint is not None:
            try:
                self._save_endpoint(endpoint)
            except Exception:
                logger.exception("endpoint persist failed url=%s", endpoint.url)

    def _on_exit(self, run_id: int, exit_info: PtyExit) -> None:
        with self._lock:
            if run_id != self._run_id:
                return
            requested = self._status.type == ApplicationStatusType.EXITING.value
        if exit_info.exit_code == 0:
            self.log.info("Invoke process exited normally\r\n")
            self._set_status(run_id, ApplicationStatusType.EXITED)
        elif exit_info.signaled or requested:
            self.log.info(
                f"Invoke process was terminated with signal {exit_info.signal}, exit code {exit_info.exit_code}\r\n"
            )
            self._set_status(run_id, ApplicationStatusType.EXITED)
        elif exit_info.exit_code is not None:
            self.log.error(f"Invoke process exited with code {exit_info.exit_code}\r\n")
            self._set_status(
                run_id,
                ApplicationStatusType.ERROR,
                error=StatusError(f"Process exited with code {exit_info.exit_code}"),
            )
        else:
            self.log.error("Invoke process was killed unexpectedly\r\n")
            self._set_status(
                run_id,
                ApplicationStatusType.ERROR,
                error=StatusError("Process was killed unexpectedly"),
            )
        self._close_display()

    def _on_settled(self, run_id: int, future: Future[CommandResult]) -> None:
        exc = future.exception()
        if exc is None:
            return
        with self._lock:
            if run_id != self._run_id or not self._status.can_transition(ApplicationStatusType.ERROR):
                return
        self.log.error(f"Failed to start Invoke process: {exc}\r\n")
        self._set_status(run_id, ApplicationStatusType.ERROR, error=StatusError(str(exc)))

    def _set_status(self, run_id: int, target: ApplicationStatusType, *, error: StatusError | None = None) -> None:
        with self._lock:
            if run_id != self._run_id or not self._status.can_transition(target):
                return
            self._status.transition(target, error=error)

    def _open_display(self, endpoint: RunningEndpoint) -> None:
        if self._display_factory is None:
            return
        callbacks = DisplayCallbacks(
            on_gone=self._on_display_gone,
            on_closed=self.exit,
            on_unresponsive=self._on_display_unresponsive,
            on_responsive=self._on_display_responsive,
        )
        surface = self._display_factory(callbacks)
        self._display = surface
        self._unresponsive_since = None
        surface.open(endpoint.loopback_url)

    def _close_display(self) -> None:
        surface = self._display
        self._display = None
        if surface is not None and surface.is_open:
            surface.close()

    def _on_display_gone(self, reason: str, exit_code: int | None) -> None:
        message = crash_reason_message(reason)
        self.log.error(f"UI Window unexpectedly exited with exit code {exit_code}: {message}\r\n")
        endpoint = self.last_endpoint
        with self._lock:
            if (
                endpoint is not None
                and self._runner.is_running()
                and self._status.can_transition(ApplicationStatusType.WINDOW_CRASHED)
            ):
                self._status.transition(
                    ApplicationStatusType.WINDOW_CRASHED,
                    crash_reason=message,
                    **endpoint.to_dict(),
                )
                self.log.info("UI Window can be reopened - server is still running\r\n")
        self._close_display()

    def _on_display_unresponsive(self) -> None:
        self._unresponsive_since = self._clock()
        self.log.warn("UI Window is unresponsive\r\n")

    def _on_display_responsive(self) -> None:
        since = self._unresponsive_since
        if since is None:
            return
        self._unresponsive_since = None
        duration_ms = int((self._clock() - since) * 1000)
        self.log.info(f"UI Window is responsive again (was unresponsive for {duration_ms}ms)\r\n")
