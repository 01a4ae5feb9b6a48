from __future__ import annotations

import itertools
import queue
import signal
from collections.abc import Callable
from pathlib import Path

import pytest

from invokelauncher.terminal.pty_backend import PtyBackend

_PIDS = itertools.count(40_000)


class FakePty:
    """Scriptable stand-in for a ptyprocess child.

    ``read`` blocks until output is fed or the process finishes, which is how
    the backend's reader thread sees a real PTY.
    """

    def __init__(
        self,
        argv: list[str],
        cwd: str | None,
        env: dict[str, str] | None,
        dimensions: tuple[int, int],
    ) -> None:
        self.argv = argv
        self.cwd = cwd
        self.env = env or {}
        self.rows, self.cols = dimensions
        self.pid = next(_PIDS)
        self.writes: list[str] = []
        self.signals: list[int] = []
        self.exitstatus: int | None = None
        self.signalstatus: int | None = None
        self.closed = False
        self.exit_on_kill = True
        self.on_write: Callable[[FakePty, str], None] | None = None
        self._queue: queue.Queue[str | None] = queue.Queue()
        self._alive = True
        self._finished = False

    def feed(self, data: str) -> None:
        self._queue.put(data)

    def finish(self, exit_code: int | None = 0, signal_number: int | None = None) -> None:
        if self._finished:
            return
        self._finished = True
        self.exitstatus = exit_code
        self.signalstatus = signal_number
        self._queue.put(None)

    def read(self, _size: int = 4096) -> str:
        item = self._queue.get()
        if item is None:
            self._alive = False
            raise EOFError
        return item

    def write(self, data: str) -> int:
        self.writes.append(data)
        if self.on_write is not None:
            self.on_write(self, data)
        return len(data)

    def kill(self, sig: int) -> None:
        self.signals.append(sig)
        if self.exit_on_kill or sig == signal.SIGKILL:
            self.finish(None, int(sig))

    def setwinsize(self, rows: int, cols: int) -> None:
        self.rows = rows
        self.cols = cols

    def isalive(self) -> bool:
        return self._alive

    def wait(self) -> int | None:
        return self.exitstatus

    def close(self) -> None:
        self.closed = True


class FakeSpawner:
    def __init__(self) -> None:
        self.processes: list[FakePty] = []
        self.on_spawn: Callable[[FakePty], None] | None = None
        self.fail_with: Exception | None = None

    def __call__(
        self,
        argv: list[str],
        cwd: str | None,
        env: dict[str, str] | None,
        dimensions: tuple[int, int],
    ) -> FakePty:
        if self.fail_with is not None:
            raise self.fail_with
        process = FakePty(argv, cwd, env, dimensions)
        self.processes.append(process)
        if self.on_spawn is not None:
            self.on_spawn(process)
        return process

    @property
    def last(self) -> FakePty:
        return self.processes[-1]


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def backend(spawner: FakeSpawner):
    pty_backend = PtyBackend(spawn=spawner, register_atexit=False)
    yield pty_backend
    for process in spawner.processes:
        process.finish(0)


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    del config
    for item in items:
        path = Path(str(getattr(item, "path", item.fspath)))
        if "integration" in path.parts:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)
