"""PTY session domain package."""

from .ansi_buffer import AppendResult, EscapeSequenceBuffer
from .command_runner import CommandResult, CommandRunner
from .console import ConsoleManager
from .history import SlidingBuffer
from .marker import MarkerCommandRunner, MarkerResult
from .models import PtyExit, Session, SessionRole
from .pty_backend import PtyBackend, kill_process
from .shell import ShellFamily, ShellSyntax, default_shell, shell_syntax

__all__ = [
    "AppendResult",
    "CommandResult",
    "CommandRunner",
    "ConsoleManager",
    "default_shell",
    "EscapeSequenceBuffer",
    "kill_process",
    "MarkerCommandRunner",
    "MarkerResult",
    "PtyBackend",
    "PtyExit",
    "Session",
    "SessionRole",
    "shell_syntax",
    "ShellFamily",
    "ShellSyntax",
    "SlidingBuffer",
]
