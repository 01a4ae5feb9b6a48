"""Boundary between the orchestration core and a display layer.

Commands come in as method calls; everything going out is published on the
:class:`~invokelauncher.events.EventBus` under a per-role topic. A
:class:`StatusPoller` additionally republishes every status on a fixed interval
so a subscriber that missed a push can catch up.
"""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from functools import partial
from pathlib import Path
from typing import Any

from invokelauncher.application.display import DisplayFactory
from invokelauncher.application.network import RunningEndpoint
from invokelauncher.application.supervisor import ApplicationSupervisor
from invokelauncher.config import LauncherConfig, load_config, remember_running_endpoint
from invokelauncher.errors import ExitCode, LauncherError
from invokelauncher.events import (
    METRICS_TOPIC,
    TERMINAL_EXITED_TOPIC,
    TERMINAL_OUTPUT_TOPIC,
    EventBus,
    LogEntry,
    TerminalExitPayload,
    TerminalOutputPayload,
    clear_logs_topic,
    log_topic,
    raw_output_topic,
    status_topic,
)
from invokelauncher.host import HostPlatform, detect_platform, resolve_uv_path
from invokelauncher.install.pins import fetch_pins
from invokelauncher.install.workflow import InstallWorkflow
from invokelauncher.metrics import MetricsSample, MetricsSampler
from invokelauncher.status import ProcessStatus
from invokelauncher.terminal.command_runner import CommandRunner
from invokelauncher.terminal.console import ConsoleManager
from invokelauncher.terminal.marker import MarkerResult
from invokelauncher.terminal.models import PtyExit, SessionRole
from invokelauncher.terminal.pty_backend import PtyBackend

logger = py_logging.getLogger(__name__)

INSTALL_ROLE = SessionRole.INSTALL.value
APPLICATION_ROLE = SessionRole.APPLICATION.value
STATUS_ROLES = (INSTALL_ROLE, APPLICATION_ROLE)


class StatusPoller:
    """Republish the current status of every role on each tick.

    A subscriber that joined late or missed a push gets the current state on
    the next tick.
    """

    def __init__(
        self,
        get_status: Callable[[str], ProcessStatus],
        publish: Callable[[str, ProcessStatus], None],
        *,
        roles: tuple[str, ...] = STATUS_ROLES,
        interval_seconds: float = 1.0,
    ) -> None:
        self._get_status = get_status
        self._publish = publish
        self.roles = roles
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def poll_once(self) -> list[ProcessStatus]:
        snapshot = [self._get_status(role) for role in self.roles]
        for role, status in zip(self.roles, snapshot):
            self._publish(role, status)
        return snapshot

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="status-poller", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 2.0) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop.set()
        thread.join(timeout)
        self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.poll_once()
            except Exception:
                logger.exception("status poll failed")


class LauncherBridge:
    def __init__(
        self,
        *,
        config: LauncherConfig | None = None,
        config_path: str | Path | None = None,
        host: HostPlatform | None = None,
        bus: EventBus | None = None,
        backend: PtyBackend | None = None,
        display_factory: DisplayFactory | None = None,
        install_workflow: InstallWorkflow | None = None,
        supervisor: ApplicationSupervisor | None = None,
        console: ConsoleManager | None = None,
        metrics: MetricsSampler | None = None,
    ) -> None:
        self.config = config or load_config(config_path)
        self.config_path = config_path
        self.host = host or detect_platform()
        self.bus = bus or EventBus()
        self.backend = backend or PtyBackend(max_history_size=self.config.history_size)
        self.poller = StatusPoller(
            self.get_status,
            self._publish_status,
            interval_seconds=self.config.status_poll_interval_seconds,
        )
        self.install = install_workflow or InstallWorkflow(
            CommandRunner(
                self.backend,
                SessionRole.INSTALL,
                kill_timeout_seconds=self.config.kill_timeout_seconds,
            ),
            host=self.host,
            pins_fetcher=partial(fetch_pins, timeout=self.config.pins_timeout_seconds),
            uv_locator=lambda: resolve_uv_path(self.host, self.config.uv_path),
            package=self.config.app_package,
            on_status=partial(self._publish_status, INSTALL_ROLE),
            on_raw_output=partial(self.bus.publish, raw_output_topic(INSTALL_ROLE)),
            on_log=partial(self._publish_log, INSTALL_ROLE),
        )
        self.application = supervisor or ApplicationSupervisor(
            CommandRunner(
                self.backend,
                SessionRole.APPLICATION,
                kill_timeout_seconds=self.config.kill_timeout_seconds,
            ),
            config=self.config,
            host=self.host,
            display_factory=None if self.config.server_mode else display_factory,
            save_endpoint=self._save_endpoint,
            on_status=partial(self._publish_status, APPLICATION_ROLE),
            on_raw_output=partial(self.bus.publish, raw_output_topic(APPLICATION_ROLE)),
            on_log=partial(self._publish_log, APPLICATION_ROLE),
            on_clear_logs=partial(self.bus.publish, clear_logs_topic(APPLICATION_ROLE), None),
        )
        self.console = console or ConsoleManager(
            self.backend,
            host=self.host,
            history_size=self.config.console_history_size,
        )
        self.metrics = metrics or MetricsSampler(
            publish=self._publish_metrics,
            application_pid=lambda: self.application.pid,
            interval_seconds=self.config.metrics_interval_seconds,
        )

    # Commands

    def start_install(self, path: str, gpu_type: str | None, version: str, repair: bool = False) -> None:
        self.install.start(path, gpu_type, version, repair)

    def cancel_install(self) -> bool:
        return self.install.cancel()

    def start_application(self, path: str) -> bool:
        return self.application.start(path)

    def exit_application(self, *, wait: bool = False) -> None:
        self.application.exit(wait=wait)

    def reopen_display(self) -> bool:
        return self.application.reopen_display()

    def resize(self, role: str, cols: int, rows: int) -> None:
        if role == INSTALL_ROLE:
            self.install.resize(cols, rows)
        elif role == APPLICATION_ROLE:
            self.application.resize(cols, rows)
        elif role == SessionRole.CONSOLE.value:
            self.console.resize(cols, rows)
        else:
            raise LauncherError(f"Unknown role: {role}", code=ExitCode.INVALID_ARGS)

    def write(self, data: str) -> None:
        self.console.write(data)

    def create_session(self, cwd: str | None = None, *, cols: int | None = None, rows: int | None = None) -> str:
        return self.console.create_console(
            on_data=self._publish_terminal_output,
            on_exit=self._publish_terminal_exit,
            cwd=cwd,
            cols=cols,
            rows=rows,
        )

    def dispose_session(self) -> None:
        self.console.dispose()

    def replay_session(self) -> str | None:
        return self.console.replay()

    def run_console_command(self, command: str, *, timeout: float | None = None) -> Future[MarkerResult]:
        return self.console.run_command(command, timeout=timeout)

    def get_status(self, role: str) -> ProcessStatus:
        if role == INSTALL_ROLE:
            return self.install.get_status()
        if role == APPLICATION_ROLE:
            return self.application.get_status()
        raise LauncherError(f"Unknown role: {role}", code=ExitCode.INVALID_ARGS)

    def start_background_tasks(self) -> None:
        self.poller.start()
        self.metrics.start()

    def shutdown(self) -> list[BaseException]:
        """Stop everything, collecting cleanup errors instead of stopping at the first."""
        errors: list[BaseException] = []
        steps: list[tuple[str, Callable[[], Any]]] = [
            ("poller", self.poller.stop),
            ("metrics", self.metrics.stop),
            ("install", self._shutdown_install),
            ("application", partial(self.application.exit, wait=True)),
            ("console", self.console.dispose),
            ("pty", self.backend.teardown),
        ]
        for name, step in steps:
            try:
                step()
            except Exception as exc:
                logger.error("shutdown step failed step=%s error=%s", name, exc)
                errors.append(exc)
        return errors

    # Events

    def _shutdown_install(self) -> None:
        if self.install.is_in_progress():
            self.install.cancel()
            self.install.join(self.config.kill_timeout_seconds)

    def _publish_status(self, role: str, status: ProcessStatus) -> None:
        self.bus.publish(status_topic(role), status.to_dict())

    def _publish_log(self, role: str, entry: LogEntry) -> None:
        self.bus.publish(log_topic(role), entry.to_dict())

    def _publish_terminal_output(self, session_id: str, data: str) -> None:
        payload: TerminalOutputPayload = {"id": session_id, "data": data}
        self.bus.publish(TERMINAL_OUTPUT_TOPIC, payload)

    def _publish_terminal_exit(self, session_id: str, exit_info: PtyExit) -> None:
        payload: TerminalExitPayload = {"id": session_id, "exit_code": exit_info.exit_code, "signal": exit_info.signal}
        self.bus.publish(TERMINAL_EXITED_TOPIC, payload)

    def _publish_metrics(self, sample: MetricsSample) -> None:
        self.bus.publish(METRICS_TOPIC, sample.to_dict())

    def _save_endpoint(self, endpoint: RunningEndpoint) -> None:
        remember_running_endpoint(
            endpoint.url,
            endpoint.loopback_url,
            endpoint.lan_url or "",
            path=self.config_path,
        )
        self.config.last_running_url = endpoint.url
        self.config.last_loopback_url = endpoint.loopback_url
        self.config.last_lan_url = endpoint.lan_url or ""
