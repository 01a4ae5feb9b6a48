"""PTY session domain models."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum

from invokelauncher.terminal.ansi_buffer import EscapeSequenceBuffer
from invokelauncher.terminal.history import SlidingBuffer


class SessionRole(str, Enum):
    CONSOLE = "console"
    INSTALL = "install"
    APPLICATION = "application"


@dataclass(frozen=True)
class PtyExit:
    exit_code: int | None
    signal: int | None = None

    @property
    def signaled(self) -> bool:
        return self.signal is not None and self.signal != 0


@dataclass
class Session:
    id: str
    role: SessionRole
    process: object
    command: tuple[str, ...]
    escape_buffer: EscapeSequenceBuffer
    history: SlidingBuffer[str]
    cols: int
    rows: int
    exited: threading.Event = field(default_factory=threading.Event)
    exit_info: PtyExit | None = None

    @property
    def pid(self) -> int | None:
        pid = getattr(self.process, "pid", None)
        return pid if isinstance(pid, int) else None
