"""Shell selection and shell-syntax strategy."""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from enum import Enum

from invokelauncher.host import HostOS, HostPlatform


class ShellFamily(str, Enum):
    POSIX = "posix"
    POWERSHELL = "powershell"
    CMD = "cmd"


@dataclass(frozen=True)
class ShellSyntax:
    family: ShellFamily
    line_ending: str = "\r"

    def wrap_with_marker(self, command: str, marker: str) -> str:
        """Wrap ``command`` so its exit code is echoed as ``<marker>:<code>``."""
        if self.family == ShellFamily.POWERSHELL:
            return (
                f"& {{ {command} }}; $__ok = $?; "
                f'Write-Output "{marker}:$(if ($__ok) {{ 0 }} elseif ($LASTEXITCODE) {{ $LASTEXITCODE }} else {{ 1 }})"'
            )
        if self.family == ShellFamily.CMD:
            # cmd expands %var% when the line is parsed; call re-expands it after the command ran.
            return f"{command} & call echo {marker}:%^errorlevel%"
        return f'{{ {command}; }}; echo "{marker}:$?"'

    def prepend_path(self, directory: str) -> str:
        if self.family == ShellFamily.POWERSHELL:
            return f"$env:Path='{directory};'+$env:Path"
        if self.family == ShellFamily.CMD:
            return f'set "PATH={directory};%PATH%"'
        return f'export PATH="{directory}:$PATH"'

    def activate(self, script: str) -> str:
        if self.family == ShellFamily.POWERSHELL:
            return f'& "{script}"'
        if self.family == ShellFamily.CMD:
            return f'call "{script}"'
        return f'source "{script}"'

    def change_directory(self, directory: str) -> str:
        if self.family == ShellFamily.POSIX:
            return f"cd {shlex.quote(directory)}"
        return f'cd "{directory}"'


def shell_syntax(family: ShellFamily | str) -> ShellSyntax:
    """Single entry point for per-shell command syntax."""
    return ShellSyntax(family=ShellFamily(family))


def default_shell(host: HostPlatform) -> tuple[str, ShellFamily]:
    if host.os == HostOS.WINDOWS:
        return "powershell.exe", ShellFamily.POWERSHELL
    if host.os == HostOS.MACOS:
        return "/bin/zsh", ShellFamily.POSIX
    return "/bin/bash", ShellFamily.POSIX


def family_for_shell(executable: str) -> ShellFamily:
    name = executable.replace("\\", "/").rsplit("/", 1)[-1].lower()
    if name in {"powershell.exe", "powershell", "pwsh", "pwsh.exe"}:
        return ShellFamily.POWERSHELL
    if name in {"cmd", "cmd.exe"}:
        return ShellFamily.CMD
    return ShellFamily.POSIX
