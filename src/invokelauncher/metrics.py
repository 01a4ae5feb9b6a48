"""Periodic resource sampling of the launcher and the application process."""

from __future__ import annotations

import logging as py_logging
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import psutil

from invokelauncher.terminal.history import SlidingBuffer

logger = py_logging.getLogger(__name__)

DEFAULT_METRICS_INTERVAL_SECONDS = 30.0
DEFAULT_METRICS_HISTORY_SIZE = 100


@dataclass(frozen=True)
class ProcessSample:
    pid: int
    rss_bytes: int
    cpu_percent: float


@dataclass(frozen=True)
class SystemSample:
    total_bytes: int
    available_bytes: int
    percent: float


@dataclass(frozen=True)
class MetricsSample:
    timestamp: float
    launcher: ProcessSample | None
    application: ProcessSample | None
    system: SystemSample | None

    def to_dict(self) -> dict[str, Any]:
        def _process(sample: ProcessSample | None) -> dict[str, Any] | None:
            if sample is None:
                return None
            return {"pid": sample.pid, "rss_bytes": sample.rss_bytes, "cpu_percent": sample.cpu_percent}

        system = None
        if self.system is not None:
            system = {
                "total_bytes": self.system.total_bytes,
                "available_bytes": self.system.available_bytes,
                "percent": self.system.percent,
            }
        return {
            "timestamp": self.timestamp,
            "launcher": _process(self.launcher),
            "application": _process(self.application),
            "system": system,
        }


class MetricsSampler:
    def __init__(
        self,
        *,
        publish: Callable[[MetricsSample], None] | None = None,
        application_pid: Callable[[], int | None] = lambda: None,
        interval_seconds: float = DEFAULT_METRICS_INTERVAL_SECONDS,
        history_size: int = DEFAULT_METRICS_HISTORY_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._publish = publish
        self._application_pid = application_pid
        self.interval_seconds = interval_seconds
        self._history: SlidingBuffer[MetricsSample] = SlidingBuffer(history_size)
        self._clock = clock
        self._processes: dict[int, psutil.Process] = {}
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def history(self) -> list[MetricsSample]:
        return self._history.get()

    def sample(self) -> MetricsSample:
        app_pid = self._application_pid()
        snapshot = MetricsSample(
            timestamp=self._clock(),
            launcher=self._sample_process(os.getpid()),
            application=self._sample_process(app_pid) if app_pid else None,
            system=self._sample_system(),
        )
        self._history.push(snapshot)
        if self._publish is not None:
            self._publish(snapshot)
        return snapshot

    def start(self) -> bool:
        if self._thread is not None and self._thread.is_alive():
            logger.warning("metrics-start ignored: already running")
            return False
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="metrics-sampler", daemon=True)
        self._thread.start()
        logger.info("metrics-start interval=%s", self.interval_seconds)
        return True

    def stop(self, timeout: float | None = 2.0) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop.set()
        thread.join(timeout)
        self._thread = None
        logger.info("metrics-stop")

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.sample()
            except Exception:
                logger.exception("metrics sample failed")
            self._stop.wait(self.interval_seconds)

    def _sample_process(self, pid: int) -> ProcessSample | None:
        try:
            process = self._processes.get(pid)
            if process is None:
                process = psutil.Process(pid)
                self._processes[pid] = process
            with process.oneshot():
                return ProcessSample(
                    pid=pid,
                    rss_bytes=process.memory_info().rss,
                    cpu_percent=process.cpu_percent(interval=None),
                )
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            self._processes.pop(pid, None)
            return None

    @staticmethod
    def _sample_system() -> SystemSample | None:
        try:
            memory = psutil.virtual_memory()
        except (OSError, psutil.Error):
            return None
        return SystemSample(total_bytes=memory.total, available_bytes=memory.available, percent=memory.percent)
