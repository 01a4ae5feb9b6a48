"""One-shot regular expression watcher for process output."""

from __future__ import annotations

import re
import threading
from collections.abc import Callable

ChunkFilter = Callable[[str], bool]


def contains_any(*needles: str) -> ChunkFilter:
    """Build a substring filter matching chunks that contain any of ``needles``."""

    def _filter(chunk: str) -> bool:
        return any(needle in chunk for needle in needles)

    return _filter


class PatternWatcher:
    """Fire ``on_match`` for the first chunk that passes the filter and matches.

    The substring filter runs before the regular expression. After the first
    match the watcher is spent and ignores further chunks.
    """

    def __init__(
        self,
        pattern: str | re.Pattern[str],
        on_match: Callable[[str], None],
        *,
        chunk_filter: ChunkFilter | None = None,
    ) -> None:
        self.pattern = re.compile(pattern) if isinstance(pattern, str) else pattern
        self._on_match = on_match
        self._filter = chunk_filter
        self._lock = threading.Lock()
        self._matched = False

    @property
    def matched(self) -> bool:
        return self._matched

    def check_for_match(self, chunk: str) -> bool:
        if self._matched:
            return False
        if self._filter is not None and not self._filter(chunk):
            return False
        match = self.pattern.search(chunk)
        if match is None:
            return False
        with self._lock:
            if self._matched:
                return False
            self._matched = True
        value = match.group(1) if match.groups() and match.group(1) is not None else match.group(0)
        self._on_match(value)
        return True
