from __future__ import annotations

import pytest

from invokelauncher.errors import InvalidTransition
from invokelauncher.status import (
    APPLICATION_TRANSITIONS,
    INSTALL_TRANSITIONS,
    ApplicationStatusType,
    InstallStatusType,
    ProcessStatus,
    StatusError,
    StatusTracker,
)


def test_tracker_starts_uninitialized() -> None:
    tracker = StatusTracker("install", INSTALL_TRANSITIONS, clock=lambda: 10.0)

    assert tracker.current == ProcessStatus(type="uninitialized", timestamp=10.0)


def test_declared_transitions_notify_listener() -> None:
    seen: list[ProcessStatus] = []
    tracker = StatusTracker("install", INSTALL_TRANSITIONS, on_change=seen.append)

    tracker.transition(InstallStatusType.STARTING)
    tracker.transition(InstallStatusType.INSTALLING)
    tracker.transition(InstallStatusType.COMPLETED)

    assert [status.type for status in seen] == ["starting", "installing", "completed"]


def test_undeclared_transition_raises() -> None:
    tracker = StatusTracker("install", INSTALL_TRANSITIONS)

    with pytest.raises(InvalidTransition):
        tracker.transition(InstallStatusType.COMPLETED)
    assert tracker.type == "uninitialized"


def test_timestamps_strictly_increase_with_frozen_clock() -> None:
    tracker = StatusTracker("application", APPLICATION_TRANSITIONS, clock=lambda: 5.0)

    first = tracker.transition(ApplicationStatusType.STARTING)
    second = tracker.transition(ApplicationStatusType.RUNNING)

    assert first.timestamp > 5.0
    assert second.timestamp > first.timestamp


def test_window_crash_is_only_reachable_from_live_states() -> None:
    assert "window-crashed" in APPLICATION_TRANSITIONS["running"]
    assert "window-crashed" not in APPLICATION_TRANSITIONS["starting"]
    assert "window-crashed" not in APPLICATION_TRANSITIONS["exiting"]
    assert "running" in APPLICATION_TRANSITIONS["window-crashed"]


def test_every_terminal_state_can_restart() -> None:
    for state in ("completed", "canceled", "error"):
        assert "starting" in INSTALL_TRANSITIONS[state]
    for state in ("exited", "error"):
        assert "starting" in APPLICATION_TRANSITIONS[state]


def test_listener_failure_does_not_undo_transition() -> None:
    def broken(_status: ProcessStatus) -> None:
        raise RuntimeError("listener down")

    tracker = StatusTracker("install", INSTALL_TRANSITIONS, on_change=broken)

    tracker.transition(InstallStatusType.STARTING)

    assert tracker.type == "starting"


def test_to_dict_flattens_data_and_error() -> None:
    status = ProcessStatus(
        type="error",
        timestamp=1.5,
        error=StatusError("Failed to get pins", context={"name": "LauncherError"}),
        data={"url": "http://127.0.0.1:9090"},
    )

    assert status.to_dict() == {
        "type": "error",
        "timestamp": 1.5,
        "url": "http://127.0.0.1:9090",
        "error": {"message": "Failed to get pins", "context": {"name": "LauncherError"}},
    }


def test_can_transition_accepts_enum_members() -> None:
    tracker = StatusTracker("install", INSTALL_TRANSITIONS)
    tracker.transition(InstallStatusType.STARTING)

    assert tracker.can_transition(InstallStatusType.ERROR)
    assert tracker.can_transition(InstallStatusType.CANCELING)
    assert not tracker.can_transition(InstallStatusType.COMPLETED)
    assert tracker.can_transition("error")


def test_can_transition_agrees_with_transition_for_application_states() -> None:
    tracker = StatusTracker("application", APPLICATION_TRANSITIONS)
    tracker.transition(ApplicationStatusType.STARTING)
    tracker.transition(ApplicationStatusType.RUNNING)

    assert tracker.can_transition(ApplicationStatusType.WINDOW_CRASHED)
    assert tracker.transition(ApplicationStatusType.WINDOW_CRASHED).type == "window-crashed"
    assert tracker.can_transition(ApplicationStatusType.EXITED)
