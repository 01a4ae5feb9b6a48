"""Sequenced, cancelable installation of the application into a directory.

The workflow provisions a managed interpreter, creates the isolated
environment and installs the application package, all through ``uv``. Every
step boundary calls ``raise_if_cancelled`` on the shared token before
anything is spawned. A step itself reports a :class:`StepResult` instead of
raising.
"""

from __future__ import annotations

import logging as py_logging
import re
import shutil
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from invokelauncher.cancellation import CancellationToken, CancelledError
from invokelauncher.config import DEFAULT_APP_PACKAGE
from invokelauncher.errors import ExitCode, LauncherError, serialize_error
from invokelauncher.events import LogEntry, SessionLog
from invokelauncher.host import (
    HostPlatform,
    detect_platform,
    ensure_supported_platform,
    first_run_marker_path,
    resolve_uv_path,
    venv_path,
)
from invokelauncher.install.details import InstallationDetails, get_installation_details
from invokelauncher.install.pins import Pins, fetch_pins
from invokelauncher.install.policy import GpuType, PackageSelection, select_package
from invokelauncher.status import INSTALL_TRANSITIONS, InstallStatusType, ProcessStatus, StatusError, StatusTracker
from invokelauncher.terminal.command_runner import CommandResult

logger = py_logging.getLogger(__name__)

_VERSION_PREFIX = re.compile(r"^\s*v?(\d+)\.(\d+)")
_IN_PROGRESS = frozenset({InstallStatusType.STARTING.value, InstallStatusType.INSTALLING.value})
_REPAIR_HINT = (
    "Try installing again with Repair mode enabled to fix this.\r\n",
    "Ask for help on Discord or GitHub if you continue to have issues.\r\n",
)


class ProcessRunner(Protocol):
    def run_command(
        self,
        command: str,
        args: list[str] | None = None,
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        on_data: Callable[[str], None] | None = None,
    ) -> Future[CommandResult]: ...

    def kill(self, *, wait: bool = True, timeout: float | None = None) -> bool: ...

    def is_running(self) -> bool: ...

    def resize(self, cols: int, rows: int) -> None: ...


class StepOutcome(str, Enum):
    OK = "ok"
    CANCELED = "canceled"
    FAILED = "failed"


@dataclass(frozen=True)
class StepResult:
    outcome: StepOutcome
    error: BaseException | None = None

    @classmethod
    def ok(cls) -> StepResult:
        return cls(StepOutcome.OK)

    @classmethod
    def canceled(cls) -> StepResult:
        return cls(StepOutcome.CANCELED)

    @classmethod
    def failed(cls, error: BaseException) -> StepResult:
        return cls(StepOutcome.FAILED, error)


@dataclass(frozen=True)
class InstallRequest:
    location: str
    gpu_type: GpuType | str | None
    version: str
    repair: bool = False


def same_major_minor(installed: str | None, required: str) -> bool:
    if not installed:
        return False
    left = _VERSION_PREFIX.match(installed)
    right = _VERSION_PREFIX.match(required)
    if left is None or right is None:
        return False
    return left.groups() == right.groups()


class InstallWorkflow:
    def __init__(
        self,
        runner: ProcessRunner,
        *,
        host: HostPlatform | None = None,
        pins_fetcher: Callable[[str], Pins] | None = None,
        details_probe: Callable[[str], InstallationDetails] | None = None,
        uv_locator: Callable[[], Path] | None = None,
        package: str = DEFAULT_APP_PACKAGE,
        on_status: Callable[[ProcessStatus], None] | None = None,
        on_raw_output: Callable[[str], None] | None = None,
        on_log: Callable[[LogEntry], None] | None = None,
    ) -> None:
        self._runner = runner
        self.host = host or detect_platform()
        self._pins_fetcher = pins_fetcher or fetch_pins
        self._details_probe = details_probe or (
            lambda path: get_installation_details(path, host=self.host, package=package)
        )
        self._uv_locator = uv_locator or (lambda: resolve_uv_path(self.host))
        self.package = package
        self._on_raw_output = on_raw_output
        self.log = SessionLog(raw_output=on_raw_output, entries=on_log, logger_name=__name__)
        self._status = StatusTracker("install", INSTALL_TRANSITIONS, on_change=on_status)
        self._lock = threading.RLock()
        self._token: CancellationToken | None = None
        self._thread: threading.Thread | None = None

    def get_status(self) -> ProcessStatus:
        return self._status.current

    def resize(self, cols: int, rows: int) -> None:
        self._runner.resize(cols, rows)

    def is_in_progress(self) -> bool:
        return self._status.type in _IN_PROGRESS or self._status.type == InstallStatusType.CANCELING.value

    def start(
        self,
        location: str,
        gpu_type: GpuType | str | None,
        version: str,
        repair: bool = False,
    ) -> threading.Thread | None:
        """Run the workflow on a background thread."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                self.log.warn("Installation already in progress\r\n")
                return None
            request = InstallRequest(location=location, gpu_type=gpu_type, version=version, repair=repair)
            self._thread = threading.Thread(
                target=self.run,
                args=(request,),
                name="install-workflow",
                daemon=True,
            )
            self._thread.start()
            return self._thread

    def join(self, timeout: float | None = None) -> bool:
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def cancel(self) -> bool:
        with self._lock:
            token = self._token
            if token is None or self._status.type not in _IN_PROGRESS:
                self.log.warn("No installation to cancel\r\n")
                return False
            self.log.warn("Canceling installation...\r\n")
            self._status.transition(InstallStatusType.CANCELING)
            token.cancel()
        return True

    def run(self, request: InstallRequest) -> ProcessStatus:
        token = CancellationToken()
        with self._lock:
            self._token = token
            self._status.transition(InstallStatusType.STARTING)
        try:
            self._install(request, token)
        except CancelledError:
            self._mark_canceled()
        except Exception as exc:
            logger.exception("install-workflow unexpected failure location=%s", request.location)
            self._fail("Unexpected installation error", exc)
        return self._status.current

    def _install(self, request: InstallRequest, token: CancellationToken) -> None:
        location = request.location
        root = Path(location)
        if not root.exists():
            self._fail_precondition(f"Install location does not exist: {location}")
            return
        if not root.is_dir():
            self._fail_precondition(f"Install location is not a directory: {location}")
            return
        try:
            ensure_supported_platform(self.host)
            selection = select_package(self.host, request.gpu_type)
        except LauncherError as exc:
            self._fail_precondition(exc.message, exc)
            return

        token.raise_if_cancelled()

        try:
            pins = self._pins_fetcher(request.version)
        except Exception as exc:
            self.log.error(f"Failed to get pins for version {request.version}: {exc}\r\n")
            self._fail("Failed to get pins", exc)
            return

        token.raise_if_cancelled()

        python_version = pins.python
        index_url = pins.index_url(self.host.os, selection.torch_platform)
        details = self._details_probe(location)
        python_mismatch = True
        if details.is_installed:
            self.log.info(f"Detected existing installation at {location}:\r\n")
            self.log.info(f"- Invoke version: {details.version}\r\n")
            self.log.info(f"- Python version: {details.python_version}\r\n")
            python_mismatch = not same_major_minor(details.python_version, python_version)

        self._log_parameters(request, selection, python_version, index_url)

        try:
            uv_path = str(self._uv_locator())
        except LauncherError as exc:
            self.log.error(f"Failed to access uv executable: {exc.message}\r\n")
            self._fail("Failed to access uv executable", exc)
            return

        with self._lock:
            token.raise_if_cancelled()
            self._status.transition(InstallStatusType.INSTALLING)

        if self._runner.is_running():
            self._runner.kill()

        if request.repair or python_mismatch:
            args = ["python", "install", python_version, "--python-preference", "only-managed"]
            if request.repair:
                args.append("--reinstall")
            self.log.info(f"Installing Python {python_version}...\r\n")
            if not self._handle_step("Failed to install Python", self._run_step(uv_path, args, token)):
                return

        token.raise_if_cancelled()

        venv = venv_path(location)
        has_venv = venv.is_dir()
        if (request.repair or python_mismatch) and has_venv:
            self.log.info("Deleting existing virtual environment...\r\n")
            try:
                shutil.rmtree(venv)
            except OSError as exc:
                logger.warning("venv-delete failed path=%s error=%s", venv, exc)
                self.log.warn("Failed to delete virtual environment\r\n")
            has_venv = False

        if not has_venv:
            args = [
                "venv",
                "--relocatable",
                "--prompt",
                "invoke",
                "--python",
                python_version,
                "--python-preference",
                "only-managed",
                str(venv),
            ]
            self.log.info("Creating virtual environment...\r\n")
            if not self._handle_step("Failed to create virtual environment", self._run_step(uv_path, args, token)):
                return
        else:
            self.log.info("Using existing virtual environment...\r\n")

        token.raise_if_cancelled()

        args = [
            "pip",
            "install",
            "--python",
            python_version,
            "--python-preference",
            "only-managed",
            selection.specifier(self.package, request.version),
            "--force-reinstall",
            "--compile-bytecode",
        ]
        if index_url:
            args.append(f"--index={index_url}")
        self.log.info(f"Installing {self.package} package...\r\n")
        result = self._run_step(uv_path, args, token, cwd=location, env={"VIRTUAL_ENV": str(venv)})
        if not self._handle_step(f"Failed to install {self.package} python package", result):
            return

        marker = first_run_marker_path(location)
        try:
            marker.write_text("", encoding="utf-8")
        except OSError as exc:
            logger.warning("first-run-marker write failed path=%s error=%s", marker, exc)
            self.log.warn("Failed to create first run marker file\r\n")

        with self._lock:
            token.raise_if_cancelled()
            self._status.transition(InstallStatusType.COMPLETED)
        self.log.info("Installation completed successfully\r\n")

    def _run_step(
        self,
        command: str,
        args: list[str],
        token: CancellationToken,
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> StepResult:
        if token.cancelled:
            return StepResult.canceled()
        self.log.info(f"> {command} {' '.join(args)}\r\n")
        future = self._runner.run_command(
            command,
            args,
            cwd=cwd,
            env=env,
            on_data=self._on_raw_output,
        )
        unregister = token.on_cancel(self._runner.kill)
        try:
            result = future.result()
        except Exception as exc:
            if token.cancelled:
                return StepResult.canceled()
            return StepResult.failed(exc)
        finally:
            unregister()

        if token.cancelled:
            return StepResult.canceled()
        if result.exit_code == 0:
            return StepResult.ok()
        return StepResult.failed(
            LauncherError(
                f"Process exited with code {result.exit_code}",
                code=ExitCode.PROCESS_ERROR,
            )
        )

    def _handle_step(self, message: str, result: StepResult) -> bool:
        if result.outcome == StepOutcome.OK:
            return True
        if result.outcome == StepOutcome.CANCELED:
            raise CancelledError()
        self.log.error(f"{message}: {result.error}\r\n")
        for line in _REPAIR_HINT:
            self.log.info(line)
        self._fail(message, result.error)
        return False

    def _log_parameters(
        self,
        request: InstallRequest,
        selection: PackageSelection,
        python_version: str,
        index_url: str | None,
    ) -> None:
        self.log.info("Installation parameters:\r\n")
        self.log.info(f"- Invoke version: {request.version}\r\n")
        self.log.info(f"- Install location: {request.location}\r\n")
        self.log.info(f"- Python version: {python_version}\r\n")
        self.log.info(f"- GPU type: {request.gpu_type or 'default'}\r\n")
        self.log.info(f"- Torch platform: {selection.torch_platform.value}\r\n")
        self.log.info(f"- Using torch index: {index_url or 'default'}\r\n")
        if request.repair:
            self.log.info("Repair mode enabled:\r\n")
            self.log.info("- Force-reinstalling python\r\n")
            self.log.info("- Deleting and recreating virtual environment\r\n")

    def _mark_canceled(self) -> None:
        with self._lock:
            if self._status.can_transition(InstallStatusType.CANCELED):
                self._status.transition(InstallStatusType.CANCELED)
        self.log.warn("Installation canceled\r\n")

    def _fail_precondition(self, message: str, exc: BaseException | None = None) -> None:
        self.log.error(f"{message}\r\n")
        self._fail(message, exc)

    def _fail(self, message: str, exc: BaseException | None) -> None:
        context = serialize_error(exc) if exc is not None else None
        with self._lock:
            if self._status.can_transition(InstallStatusType.ERROR):
                self._status.transition(InstallStatusType.ERROR, error=StatusError(message=message, context=context))
