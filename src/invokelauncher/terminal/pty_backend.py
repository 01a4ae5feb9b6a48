"""PTY session lifecycle: spawn, index, write, resize, replay and dispose."""

from __future__ import annotations

import atexit
import codecs
import logging as py_logging
import os
import signal
import subprocess
import sys
import threading
import time
import uuid
from collections.abc import Callable
from contextlib import suppress

from invokelauncher.errors import ExitCode, LauncherError
from invokelauncher.terminal.ansi_buffer import EscapeSequenceBuffer
from invokelauncher.terminal.history import DEFAULT_HISTORY_SIZE, SlidingBuffer
from invokelauncher.terminal.models import PtyExit, Session, SessionRole

logger = py_logging.getLogger(__name__)

DEFAULT_ENV: dict[str, str] = {
    "FORCE_COLOR": "1",
    "PYTHONUNBUFFERED": "1",
}
DEFAULT_COLS = 80
DEFAULT_ROWS = 24
READ_CHUNK_SIZE = 4096

PtySpawn = Callable[[list[str], str | None, dict[str, str] | None, tuple[int, int]], object]
DataCallback = Callable[[str, str], None]
ExitCallback = Callable[[str, PtyExit], None]


def _spawn_with_ptyprocess(
    command: list[str],
    cwd: str | None,
    env: dict[str, str] | None,
    dimensions: tuple[int, int],
) -> object:
    try:
        from ptyprocess import PtyProcessUnicode
    except Exception as exc:
        raise LauncherError(
            "ptyprocess backend is unavailable.",
            code=ExitCode.RUNTIME_ERROR,
            hint="Install the ptyprocess package.",
        ) from exc

    process = PtyProcessUnicode.spawn(command, cwd=cwd, env=env, dimensions=dimensions)
    process.decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    return process


def _spawn_with_pywinpty(
    command: list[str],
    cwd: str | None,
    env: dict[str, str] | None,
    dimensions: tuple[int, int],
) -> object:
    try:
        from winpty import PtyProcess
    except Exception as exc:
        raise LauncherError(
            "pywinpty backend is unavailable.",
            code=ExitCode.RUNTIME_ERROR,
            hint="Install the pywinpty package on Windows.",
        ) from exc

    kwargs: dict[str, object] = {"dimensions": dimensions}
    if cwd:
        kwargs["cwd"] = cwd
    if env:
        kwargs["env"] = env
    return PtyProcess.spawn(subprocess.list2cmdline(command), **kwargs)


def default_spawn() -> PtySpawn:
    if sys.platform.startswith("win"):
        return _spawn_with_pywinpty
    return _spawn_with_ptyprocess


def kill_process(process: object, *, force: bool = False, windows: bool | None = None) -> None:
    """Terminate a PTY child the way the host OS allows.

    POSIX gets SIGTERM (SIGKILL when ``force``) so the child can shut down
    gracefully. Windows has no signals, so the process tree is removed with
    ``taskkill /F``.
    """
    is_windows = sys.platform.startswith("win") if windows is None else windows
    pid = getattr(process, "pid", None)
    if is_windows:
        if isinstance(pid, int):
            subprocess.run(
                ["taskkill", "/pid", str(pid), "/T", "/F"],
                capture_output=True,
                check=False,
            )
            return
        if hasattr(process, "terminate"):
            with suppress(Exception):
                process.terminate(force=True)
        return

    sig = signal.SIGKILL if force else signal.SIGTERM
    if hasattr(process, "kill"):
        try:
            process.kill(sig)
            return
        except TypeError:
            pass
        except OSError as exc:
            logger.debug("kill failed pid=%s error=%s", pid, exc)
            return
    if isinstance(pid, int):
        with suppress(ProcessLookupError, PermissionError):
            os.kill(pid, sig)


def _read_exit(process: object) -> PtyExit:
    if hasattr(process, "wait"):
        try:
            process.wait()
        except Exception as exc:
            logger.debug("wait on PTY child failed error=%s", exc)
    exit_code = getattr(process, "exitstatus", None)
    signal_status = getattr(process, "signalstatus", None)
    return PtyExit(
        exit_code=exit_code if isinstance(exit_code, int) else None,
        signal=signal_status if isinstance(signal_status, int) else None,
    )


def _is_alive(process: object) -> bool:
    if hasattr(process, "isalive"):
        try:
            return bool(process.isalive())
        except Exception:
            return False
    return True


class _Listeners:
    def __init__(self) -> None:
        self.data: list[Callable[[str], None]] = []
        self.exit: list[Callable[[PtyExit], None]] = []


class PtyBackend:
    """Owns every PTY session, at most one per role.

    Each session gets a reader thread that delivers output in arrival order and
    then a single exit notification, so ``on_exit`` never overtakes ``on_data``.
    """

    def __init__(
        self,
        spawn: PtySpawn | None = None,
        *,
        max_history_size: int = DEFAULT_HISTORY_SIZE,
        kill: Callable[..., None] = kill_process,
        register_atexit: bool = True,
    ) -> None:
        self._spawn = spawn or default_spawn()
        self._kill = kill
        self.max_history_size = max_history_size
        self._lock = threading.RLock()
        self._sessions: dict[str, Session] = {}
        self._roles: dict[SessionRole, str] = {}
        self._listeners: dict[str, _Listeners] = {}
        if register_atexit:
            atexit.register(self.teardown)

    def create(
        self,
        role: SessionRole,
        command: str,
        args: list[str] | None = None,
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        cols: int | None = None,
        rows: int | None = None,
        on_data: DataCallback | None = None,
        on_exit: ExitCallback | None = None,
        history_size: int | None = None,
    ) -> Session:
        if not command.strip():
            raise LauncherError(
                "PTY command cannot be empty.",
                code=ExitCode.VALIDATION_ERROR,
                hint="Provide an executable for the session.",
            )
        resolved_cols = cols or DEFAULT_COLS
        resolved_rows = rows or DEFAULT_ROWS
        argv = [command, *(args or [])]
        merged_env = {**os.environ, **DEFAULT_ENV, **(env or {})}
        resolved_cwd = cwd or os.getcwd()

        with self._lock:
            previous = self._roles.get(role)
            if previous is not None:
                logger.info("pty-replace role=%s previous=%s", role.value, previous)
                self.dispose(previous)

            try:
                process = self._spawn(argv, resolved_cwd, merged_env, (resolved_rows, resolved_cols))
            except LauncherError:
                raise
            except Exception as exc:
                raise LauncherError(
                    f"Failed to start PTY process: {command}",
                    code=ExitCode.PROCESS_ERROR,
                    hint=str(exc) or "Check that the executable exists.",
                ) from exc

            session = Session(
                id=uuid.uuid4().hex,
                role=role,
                process=process,
                command=tuple(argv),
                escape_buffer=EscapeSequenceBuffer(),
                history=SlidingBuffer(history_size or self.max_history_size),
                cols=resolved_cols,
                rows=resolved_rows,
            )
            self._sessions[session.id] = session
            self._roles[role] = session.id
            self._listeners[session.id] = _Listeners()

        logger.info(
            "pty-create id=%s role=%s pid=%s command=%s",
            session.id,
            role.value,
            session.pid,
            " ".join(argv),
        )
        reader = threading.Thread(
            target=self._pump,
            args=(session, on_data, on_exit),
            name=f"pty-{role.value}-{session.id[:8]}",
            daemon=True,
        )
        reader.start()
        return session

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def for_role(self, role: SessionRole) -> Session | None:
        with self._lock:
            session_id = self._roles.get(role)
            return self._sessions.get(session_id) if session_id else None

    def list_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def write(self, session_id: str, data: str) -> bool:
        session = self.get(session_id)
        if session is None:
            return False
        try:
            session.process.write(data)
        except Exception as exc:
            logger.warning("pty-write failed id=%s error=%s", session_id, exc)
            return False
        return True

    def resize(self, session_id: str, cols: int, rows: int) -> bool:
        if cols <= 0 or rows <= 0:
            raise LauncherError(
                f"Invalid PTY size: {cols}x{rows}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Use positive terminal row/column values.",
            )
        session = self.get(session_id)
        if session is None:
            return False
        process = session.process
        try:
            if hasattr(process, "setwinsize"):
                process.setwinsize(rows, cols)
            else:
                process.set_size(cols, rows)
        except Exception as exc:
            logger.warning("pty-resize failed id=%s error=%s", session_id, exc)
            return False
        session.cols = cols
        session.rows = rows
        return True

    def replay(self, session_id: str) -> str | None:
        session = self.get(session_id)
        if session is None:
            return None
        return "".join(session.history.get())

    def subscribe(
        self,
        session_id: str,
        *,
        on_data: Callable[[str], None] | None = None,
        on_exit: Callable[[PtyExit], None] | None = None,
    ) -> Callable[[], None] | None:
        """Attach extra observers to a live session; returns an unsubscribe callable."""
        with self._lock:
            listeners = self._listeners.get(session_id)
            if listeners is None:
                return None
            if on_data is not None:
                listeners.data.append(on_data)
            if on_exit is not None:
                listeners.exit.append(on_exit)

        def _unsubscribe() -> None:
            with self._lock:
                if on_data is not None and on_data in listeners.data:
                    listeners.data.remove(on_data)
                if on_exit is not None and on_exit in listeners.exit:
                    listeners.exit.remove(on_exit)

        return _unsubscribe

    def dispose(self, session_id: str, *, force: bool = False) -> None:
        with self._lock:
            session = self._detach(session_id)
        if session is None:
            return
        session.escape_buffer.clear()
        session.history.clear()
        if session.exited.is_set():
            return
        logger.info("pty-dispose id=%s role=%s pid=%s", session.id, session.role.value, session.pid)
        try:
            self._kill(session.process, force=force)
        except Exception as exc:
            logger.warning("pty-dispose kill failed id=%s error=%s", session.id, exc)

    def force_kill(self, session: Session) -> None:
        if session.exited.is_set():
            return
        logger.warning("pty-force-kill id=%s pid=%s", session.id, session.pid)
        try:
            self._kill(session.process, force=True)
        except Exception as exc:
            logger.warning("pty-force-kill failed id=%s error=%s", session.id, exc)

    def wait_for_exit(self, session: Session, timeout: float | None = None) -> bool:
        return session.exited.wait(timeout)

    def teardown(self, *, grace_seconds: float = 2.0) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            self.dispose(session.id)
        deadline = time.monotonic() + grace_seconds
        for session in sessions:
            remaining = max(0.0, deadline - time.monotonic())
            if not session.exited.wait(remaining) and _is_alive(session.process):
                self.force_kill(session)

    def _detach(self, session_id: str) -> Session | None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        if self._roles.get(session.role) == session_id:
            del self._roles[session.role]
        return session

    def _pump(
        self,
        session: Session,
        on_data: DataCallback | None,
        on_exit: ExitCallback | None,
    ) -> None:
        process = session.process
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                try:
                    chunk = process.read(READ_CHUNK_SIZE)
                except EOFError:
                    break
                except OSError as exc:
                    logger.debug("pty-read ended id=%s error=%s", session.id, exc)
                    break
                if isinstance(chunk, bytes):
                    text = decoder.decode(chunk)
                else:
                    text = "" if chunk is None else str(chunk)
                if not text:
                    if not _is_alive(process):
                        break
                    time.sleep(0.01)
                    continue
                self._deliver(session, text, on_data)
        finally:
            exit_info = _read_exit(process)
            with suppress(Exception):
                if hasattr(process, "close"):
                    process.close()
            with self._lock:
                if self._sessions.get(session.id) is session:
                    self._detach(session.id)
                listeners = self._listeners.pop(session.id, None)
            session.escape_buffer.clear()
            session.history.clear()
            session.exit_info = exit_info
            logger.info(
                "pty-exit id=%s role=%s code=%s signal=%s",
                session.id,
                session.role.value,
                exit_info.exit_code,
                exit_info.signal,
            )
            try:
                for callback in list(listeners.exit if listeners else []):
                    self._safe_call(callback, exit_info)
                if on_exit is not None:
                    self._safe_call(on_exit, session.id, exit_info)
            finally:
                # Waiters observe the exit only after every exit callback ran.
                session.exited.set()

    def _deliver(self, session: Session, text: str, on_data: DataCallback | None) -> None:
        result = session.escape_buffer.append(text)
        if result.complete:
            session.history.push(result.complete)
        with self._lock:
            listeners = list(self._listeners[session.id].data) if session.id in self._listeners else []
        if on_data is not None:
            self._safe_call(on_data, session.id, text)
        for callback in listeners:
            self._safe_call(callback, text)

    @staticmethod
    def _safe_call(callback: Callable[..., None], *args: object) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception("PTY callback failed")
