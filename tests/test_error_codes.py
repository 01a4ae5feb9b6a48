from __future__ import annotations

from invokelauncher.errors import ExitCode, InvalidTransition, LauncherError, serialize_error, user_facing_error


def test_exit_codes_are_deterministic() -> None:
    assert int(ExitCode.SUCCESS) == 0
    assert int(ExitCode.INVALID_ARGS) == 2
    assert int(ExitCode.INSTALL_ERROR) == 5
    assert int(ExitCode.UNSUPPORTED_PLATFORM) == 8
    assert int(ExitCode.CANCELED) == 9


def test_launcher_error_string_contains_hint() -> None:
    err = LauncherError("uv not found", code=ExitCode.INSTALL_ERROR, hint="Install uv")
    assert str(err) == "uv not found Hint: Install uv"


def test_user_facing_error_template() -> None:
    assert user_facing_error("Invalid GPU type", hint="Use nogpu") == "Error: Invalid GPU type. Next step: Use nogpu"
    assert user_facing_error("Boom") == "Error: Boom."


def test_invalid_transition_names_both_states() -> None:
    err = InvalidTransition("install", "completed", "installing")

    assert err.code == ExitCode.VALIDATION_ERROR
    assert err.message == "Invalid install status transition: completed -> installing"
    assert (err.role, err.current, err.target) == ("install", "completed", "installing")


def test_serialize_error_includes_code_hint_and_cause() -> None:
    try:
        try:
            raise OSError("connection reset")
        except OSError as inner:
            raise LauncherError("pins failed", code=ExitCode.INSTALL_ERROR, hint="retry") from inner
    except LauncherError as exc:
        payload = serialize_error(exc)

    assert payload["name"] == "LauncherError"
    assert payload["code"] == 5
    assert payload["hint"] == "retry"
    assert "stack" in payload
    cause = payload["cause"]
    assert isinstance(cause, dict)
    assert cause["name"] == "OSError"
    assert cause["message"] == "connection reset"


def test_serialize_error_limits_cause_depth() -> None:
    error: BaseException = ValueError("root")
    for index in range(10):
        wrapper = RuntimeError(f"level {index}")
        wrapper.__cause__ = error
        error = wrapper

    payload = serialize_error(error, max_depth=2)

    depth = 0
    node = payload
    while "cause" in node:
        node = node["cause"]  # type: ignore[assignment]
        depth += 1
    assert depth == 2
