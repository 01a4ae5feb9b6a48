"""Host platform facts and per-platform filesystem layout."""

from __future__ import annotations

import os
import platform
import shutil
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from invokelauncher.errors import ExitCode, LauncherError

VENV_DIRNAME = ".venv"
APP_EXECUTABLE = "invokeai-web"
APP_CONFIG_FILENAME = "invokeai.yaml"
FIRST_RUN_MARKER_FILENAME = ".invokeai_first_run_marker"

_ARCH_ALIASES = {
    "amd64": "x64",
    "x86_64": "x64",
    "x64": "x64",
    "arm64": "arm64",
    "aarch64": "arm64",
}


class HostOS(str, Enum):
    WINDOWS = "win32"
    LINUX = "linux"
    MACOS = "darwin"


@dataclass(frozen=True)
class HostPlatform:
    os: HostOS
    arch: str

    @property
    def is_windows(self) -> bool:
        return self.os == HostOS.WINDOWS

    @property
    def is_macos(self) -> bool:
        return self.os == HostOS.MACOS

    @property
    def label(self) -> str:
        return f"{self.os.value} {self.arch}"


SUPPORTED_PLATFORMS = frozenset(
    {
        HostPlatform(HostOS.WINDOWS, "x64"),
        HostPlatform(HostOS.LINUX, "x64"),
        HostPlatform(HostOS.MACOS, "arm64"),
    }
)


def detect_platform(
    *,
    sys_platform: str | None = None,
    machine: str | None = None,
) -> HostPlatform:
    raw_platform = sys_platform if sys_platform is not None else sys.platform
    if raw_platform.startswith("win"):
        host_os = HostOS.WINDOWS
    elif raw_platform == "darwin":
        host_os = HostOS.MACOS
    else:
        host_os = HostOS.LINUX
    raw_machine = (machine if machine is not None else platform.machine()).strip().lower()
    return HostPlatform(os=host_os, arch=_ARCH_ALIASES.get(raw_machine, raw_machine or "unknown"))


def ensure_supported_platform(host: HostPlatform) -> HostPlatform:
    if host not in SUPPORTED_PLATFORMS:
        raise LauncherError(
            f"Unsupported platform: {host.label}",
            code=ExitCode.UNSUPPORTED_PLATFORM,
            hint="Supported hosts are Windows x64, Linux x64 and macOS arm64.",
        )
    return host


def venv_path(install_dir: str | Path) -> Path:
    return Path(install_dir).resolve() / VENV_DIRNAME


def venv_python_path(venv: str | Path, host: HostPlatform) -> Path:
    if host.is_windows:
        return Path(venv) / "Scripts" / "python.exe"
    return Path(venv) / "bin" / "python"


def app_executable_path(install_dir: str | Path, host: HostPlatform) -> Path:
    if host.is_windows:
        return Path(install_dir) / VENV_DIRNAME / "Scripts" / f"{APP_EXECUTABLE}.exe"
    return Path(install_dir) / VENV_DIRNAME / "bin" / APP_EXECUTABLE


def activate_script_path(install_dir: str | Path, host: HostPlatform) -> Path:
    if host.is_windows:
        return Path(install_dir) / VENV_DIRNAME / "Scripts" / "Activate.ps1"
    return Path(install_dir) / VENV_DIRNAME / "bin" / "activate"


def first_run_marker_path(install_dir: str | Path) -> Path:
    return Path(install_dir) / FIRST_RUN_MARKER_FILENAME


def default_bin_dir() -> Path:
    override = os.getenv("INVOKELAUNCHER_BIN_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path(sys.prefix) / "bin"


def resolve_uv_path(host: HostPlatform, configured: str = "") -> Path:
    """Locate the ``uv`` environment manager and check it is a file."""
    name = "uv.exe" if host.is_windows else "uv"
    if configured.strip():
        candidate = Path(configured.strip()).expanduser()
    else:
        bundled = default_bin_dir() / name
        found = shutil.which(name)
        candidate = bundled if bundled.is_file() or not found else Path(found)
    if not candidate.exists():
        raise LauncherError(
            f"uv executable not found: {candidate}",
            code=ExitCode.INSTALL_ERROR,
            hint=f"Install uv or point {name} to it in the launcher configuration.",
        )
    if not candidate.is_file():
        raise LauncherError(
            f"uv executable is not a file: {candidate}",
            code=ExitCode.INSTALL_ERROR,
            hint="Check the configured uv path.",
        )
    return candidate
