from __future__ import annotations

import signal

import pytest

from invokelauncher.errors import ExitCode, LauncherError
from invokelauncher.terminal.command_runner import CommandResult, CommandRunner
from invokelauncher.terminal.models import PtyExit, SessionRole


def test_run_command_resolves_with_exit_code(backend, spawner) -> None:
    runner = CommandRunner(backend, SessionRole.INSTALL)
    output: list[str] = []

    future = runner.run_command("uv", ["venv"], on_data=output.append)
    assert runner.is_running()
    assert runner.pid == spawner.last.pid

    spawner.last.feed("created\r\n")
    spawner.last.finish(0)

    assert future.result(timeout=2) == CommandResult(exit_code=0)
    assert output == ["created\r\n"]
    assert runner.is_running() is False


def test_starting_second_command_settles_first_before_spawning(backend, spawner) -> None:
    runner = CommandRunner(backend, SessionRole.INSTALL)
    order: list[str] = []

    first = runner.run_command("first", on_exit=lambda _exit: order.append("first-exit"))
    spawner.on_spawn = lambda process: order.append(f"spawn:{process.argv[0]}")

    second = runner.run_command("second")

    assert first.done()
    assert first.result() == CommandResult(exit_code=None, signal=signal.SIGTERM)
    assert order == ["first-exit", "spawn:second"]
    assert spawner.processes[0].signals == [signal.SIGTERM]
    assert not second.done()
    spawner.last.finish(0)
    assert second.result(timeout=2).exit_code == 0


def test_kill_waits_and_force_kills_after_timeout(backend, spawner) -> None:
    runner = CommandRunner(backend, SessionRole.INSTALL, kill_timeout_seconds=0.05)
    future = runner.run_command("stubborn")
    spawner.last.exit_on_kill = False

    exited = runner.kill()

    assert exited is False
    assert spawner.last.signals == [signal.SIGTERM, signal.SIGKILL]
    with pytest.raises(LauncherError) as exc:
        future.result(timeout=2)
    assert exc.value.code == ExitCode.PROCESS_ERROR
    assert runner.is_running() is False


def test_kill_without_active_command_is_true(backend) -> None:
    runner = CommandRunner(backend, SessionRole.INSTALL)

    assert runner.kill() is True


def test_spawn_failure_sets_future_exception(backend, spawner) -> None:
    runner = CommandRunner(backend, SessionRole.APPLICATION)
    spawner.fail_with = PermissionError("denied")

    future = runner.run_command("app")

    with pytest.raises(LauncherError):
        future.result(timeout=1)
    assert runner.is_running() is False


def test_resize_is_remembered_for_next_spawn(backend, spawner) -> None:
    runner = CommandRunner(backend, SessionRole.INSTALL)
    runner.resize(132, 43)

    runner.run_command("uv")

    assert (spawner.last.cols, spawner.last.rows) == (132, 43)


def test_on_exit_receives_exit_info(backend, spawner) -> None:
    runner = CommandRunner(backend, SessionRole.APPLICATION)
    exits: list[PtyExit] = []

    future = runner.run_command("app", on_exit=exits.append)
    spawner.last.finish(None, 9)

    assert future.result(timeout=2) == CommandResult(exit_code=None, signal=9)
    assert exits == [PtyExit(exit_code=None, signal=9)]
