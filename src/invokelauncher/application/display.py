"""Display surfaces bound to a running application endpoint."""

from __future__ import annotations

import logging as py_logging
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

logger = py_logging.getLogger(__name__)

_CRASH_REASONS = {
    "oom": "Out of Memory (OOM)",
    "crashed": "Crashed",
    "killed": "Killed",
}


def crash_reason_message(reason: str) -> str:
    return _CRASH_REASONS.get(reason, f"Unknown ({reason})")


@dataclass(frozen=True)
class DisplayCallbacks:
    """Notifications a surface sends back to its owner.

    ``on_gone`` reports abnormal termination with a reason such as ``oom``;
    ``on_closed`` reports that the user closed the surface.
    """

    on_gone: Callable[[str, int | None], None]
    on_closed: Callable[[], None]
    on_unresponsive: Callable[[], None]
    on_responsive: Callable[[], None]


class DisplaySurface(Protocol):
    def open(self, url: str) -> None: ...

    def close(self) -> None: ...

    @property
    def is_open(self) -> bool: ...


DisplayFactory = Callable[[DisplayCallbacks], DisplaySurface]


class BrowserSurface:
    """Opens the endpoint in the user's default web browser.

    A browser tab is not owned by the launcher, so it never reports crashes
    and closing only forgets the binding.
    """

    def __init__(self, callbacks: DisplayCallbacks, *, opener: Callable[[str], bool] = webbrowser.open) -> None:
        self.callbacks = callbacks
        self._opener = opener
        self._url: str | None = None

    def open(self, url: str) -> None:
        if not self._opener(url):
            logger.warning("browser-open failed url=%s", url)
        self._url = url

    def close(self) -> None:
        self._url = None

    @property
    def is_open(self) -> bool:
        return self._url is not None


def browser_surface_factory(callbacks: DisplayCallbacks) -> DisplaySurface:
    return BrowserSurface(callbacks)
