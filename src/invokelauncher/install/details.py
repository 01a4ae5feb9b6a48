"""On-demand probing of an installation directory."""

from __future__ import annotations

import logging as py_logging
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from invokelauncher.host import (
    APP_CONFIG_FILENAME,
    HostPlatform,
    activate_script_path,
    app_executable_path,
    detect_platform,
    venv_path,
    venv_python_path,
)

logger = py_logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 30

ProbeRunner = Callable[[list[str]], str | None]


@dataclass(frozen=True)
class InstallationDetails:
    path: str
    is_directory: bool
    is_installed: bool
    can_install: bool
    is_first_run: bool = False
    version: str | None = None
    python_version: str | None = None
    python_path: str | None = None
    executable_path: str | None = None
    activate_path: str | None = None


def _run_probe(argv: list[str]) -> str | None:
    try:
        completed = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=PROBE_TIMEOUT_SECONDS,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("probe failed argv=%s error=%s", argv, exc)
        return None
    if completed.returncode != 0:
        logger.debug("probe exited argv=%s code=%s", argv, completed.returncode)
        return None
    output = completed.stdout.strip()
    return output or None


def normalize_version(version: str) -> str:
    cleaned = version.strip()
    return cleaned if cleaned.startswith("v") else f"v{cleaned}"


def python_version(python_path: str | Path, *, runner: ProbeRunner = _run_probe) -> str | None:
    return runner([str(python_path), "-c", "import sys; print(sys.version.split()[0])"])


def package_version(
    python_path: str | Path,
    package: str,
    *,
    runner: ProbeRunner = _run_probe,
) -> str | None:
    script = f"from importlib.metadata import version; print(version({package!r}))"
    return runner([str(python_path), "-c", script])


def get_installation_details(
    install_dir: str | Path,
    *,
    host: HostPlatform | None = None,
    package: str = "invokeai",
    runner: ProbeRunner = _run_probe,
) -> InstallationDetails:
    resolved_host = host or detect_platform()
    location = str(install_dir)
    root = Path(install_dir)

    if not root.is_dir():
        return InstallationDetails(path=location, is_directory=False, is_installed=False, can_install=False)

    venv = venv_path(root)
    if not venv.is_dir():
        return InstallationDetails(path=location, is_directory=True, is_installed=False, can_install=True)

    python_path = venv_python_path(venv, resolved_host)
    version = package_version(python_path, package, runner=runner)
    if not version:
        return InstallationDetails(path=location, is_directory=True, is_installed=False, can_install=True)

    return InstallationDetails(
        path=location,
        is_directory=True,
        is_installed=True,
        can_install=True,
        is_first_run=not (root / APP_CONFIG_FILENAME).is_file(),
        version=normalize_version(version),
        python_version=python_version(python_path, runner=runner),
        python_path=str(python_path),
        executable_path=str(app_executable_path(root, resolved_host)),
        activate_path=str(activate_script_path(root, resolved_host)),
    )
