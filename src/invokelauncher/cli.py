"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging as py_logging
import sys
import threading
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TextIO

from .application.display import browser_surface_factory
from .bridge import APPLICATION_ROLE, INSTALL_ROLE, LauncherBridge
from .config import load_config
from .errors import ExitCode, LauncherError, user_facing_error
from .events import raw_output_topic, status_topic
from .install.details import get_installation_details
from .install.policy import GpuType
from .logging import configure_logging, default_log_path

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_GPU_CHOICES = tuple(item.value for item in GpuType)
_INSTALL_FINAL = frozenset({"completed", "canceled", "error"})
_APPLICATION_FINAL = frozenset({"exited", "error"})

BridgeFactory = Callable[[argparse.Namespace], LauncherBridge]


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="invokelauncher")
    parser.add_argument("--log-level", type=_log_level_type, default="INFO")
    parser.add_argument("--log-file", type=Path, default=None)
    parser.add_argument("--config", type=Path, default=None)
    subparsers = parser.add_subparsers(dest="command")

    install = subparsers.add_parser("install", help="Install or repair the application")
    install.add_argument("path")
    install.add_argument("--gpu", choices=_GPU_CHOICES, default=None)
    install.add_argument("--version", required=True)
    install.add_argument("--repair", action="store_true")

    run_app = subparsers.add_parser("run", help="Start the installed application")
    run_app.add_argument("path")

    details = subparsers.add_parser("details", help="Describe an installation directory")
    details.add_argument("path")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def default_bridge_factory(namespace: argparse.Namespace) -> LauncherBridge:
    config = load_config(namespace.config)
    return LauncherBridge(
        config=config,
        config_path=namespace.config,
        display_factory=browser_surface_factory,
    )


def _wait_for_status(
    bridge: LauncherBridge,
    role: str,
    final: frozenset[str],
    start: Callable[[], object],
    on_interrupt: Callable[[], object],
) -> str:
    done = threading.Event()

    def _on_status(payload: dict[str, object]) -> None:
        if payload.get("type") in final:
            done.set()

    unsubscribe = bridge.bus.subscribe(status_topic(role), _on_status)
    try:
        start()
        while not done.wait(0.2):
            if bridge.get_status(role).type in final:
                break
    except KeyboardInterrupt:
        on_interrupt()
        while bridge.get_status(role).type not in final:
            done.wait(0.2)
    finally:
        unsubscribe()
    return bridge.get_status(role).type


def _pipe_output(bridge: LauncherBridge, role: str, stream: TextIO) -> Callable[[], None]:
    def _write(data: str) -> None:
        stream.write(data)
        stream.flush()

    return bridge.bus.subscribe(raw_output_topic(role), _write)


def run_install(namespace: argparse.Namespace, bridge: LauncherBridge, stream: TextIO) -> int:
    unsubscribe = _pipe_output(bridge, INSTALL_ROLE, stream)
    try:
        final = _wait_for_status(
            bridge,
            INSTALL_ROLE,
            _INSTALL_FINAL,
            lambda: bridge.start_install(namespace.path, namespace.gpu, namespace.version, namespace.repair),
            bridge.cancel_install,
        )
    finally:
        unsubscribe()
    if final == "completed":
        return int(ExitCode.SUCCESS)
    if final == "canceled":
        return int(ExitCode.CANCELED)
    status = bridge.get_status(INSTALL_ROLE)
    message = status.error.message if status.error else "Installation failed"
    raise LauncherError(message, code=ExitCode.INSTALL_ERROR, hint="Retry with --repair.")


def run_application(namespace: argparse.Namespace, bridge: LauncherBridge, stream: TextIO) -> int:
    unsubscribe = _pipe_output(bridge, APPLICATION_ROLE, stream)
    try:
        final = _wait_for_status(
            bridge,
            APPLICATION_ROLE,
            _APPLICATION_FINAL,
            lambda: bridge.start_application(namespace.path),
            lambda: bridge.exit_application(wait=True),
        )
    finally:
        unsubscribe()
    if final == "exited":
        return int(ExitCode.SUCCESS)
    status = bridge.get_status(APPLICATION_ROLE)
    message = status.error.message if status.error else "Application failed"
    raise LauncherError(message, code=ExitCode.PROCESS_ERROR)


def show_details(namespace: argparse.Namespace, stream: TextIO) -> int:
    config = load_config(namespace.config)
    details = get_installation_details(namespace.path, package=config.app_package)
    stream.write(json.dumps(dataclasses.asdict(details), indent=2) + "\n")
    return int(ExitCode.SUCCESS)


def run_cli_flow(
    namespace: argparse.Namespace,
    *,
    bridge_factory: BridgeFactory = default_bridge_factory,
    stream: TextIO | None = None,
) -> int:
    output = stream or sys.stdout
    if namespace.command == "details":
        return show_details(namespace, output)

    bridge = bridge_factory(namespace)
    try:
        bridge.start_background_tasks()
        if namespace.command == "install":
            return run_install(namespace, bridge, output)
        return run_application(namespace, bridge, output)
    finally:
        for error in bridge.shutdown():
            py_logging.getLogger(__name__).debug("shutdown error: %s", error)


def main(
    argv: Sequence[str] | None = None,
    *,
    bridge_factory: BridgeFactory = default_bridge_factory,
    stream: TextIO | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    logger = configure_logging(level=namespace.log_level, log_file=log_path)

    if namespace.command is None:
        parser.print_usage(sys.stderr)
        return int(ExitCode.INVALID_ARGS)

    try:
        logger.debug("Starting CLI flow command=%s", namespace.command)
        return run_cli_flow(namespace, bridge_factory=bridge_factory, stream=stream)
    except LauncherError as exc:
        logger.error(
            "Handled LauncherError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        print(user_facing_error("Unexpected runtime failure", hint=f"Inspect logs: {log_path}"), file=sys.stderr)
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
