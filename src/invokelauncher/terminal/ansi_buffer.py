"""Reassembly of terminal output into fragments that never split an escape sequence."""

from __future__ import annotations

from dataclasses import dataclass

ESC = "\x1b"
BEL = "\x07"
DEFAULT_MAX_CARRY = 4096

# Introducers whose payload runs until BEL or ST (ESC \).
_STRING_INTRODUCERS = frozenset("]PX^_")


@dataclass(frozen=True)
class AppendResult:
    complete: str
    has_incomplete: bool


def _sequence_end(data: str, start: int) -> int | None:
    """Return the index just past the escape sequence at ``start``.

    ``None`` means the sequence is still open at the end of ``data``.
    Malformed sequences end at the offending character, which is left as text.
    """
    index = start + 1
    if index >= len(data):
        return None
    kind = data[index]

    if kind == "[":
        index += 1
        while index < len(data):
            code = ord(data[index])
            if 0x40 <= code <= 0x7E:
                return index + 1
            if not 0x20 <= code <= 0x3F:
                return index
            index += 1
        return None

    if kind in _STRING_INTRODUCERS:
        index += 1
        while index < len(data):
            char = data[index]
            if char == BEL:
                return index + 1
            if char == ESC:
                if index + 1 >= len(data):
                    return None
                if data[index + 1] == "\\":
                    return index + 2
            index += 1
        return None

    while index < len(data):
        code = ord(data[index])
        if 0x20 <= code <= 0x2F:
            index += 1
            continue
        if 0x30 <= code <= 0x7E:
            return index + 1
        return index
    return None


def find_incomplete_sequence(data: str) -> int | None:
    """Index where an unterminated escape sequence starts, if any."""
    index = data.find(ESC)
    while index != -1:
        end = _sequence_end(data, index)
        if end is None:
            return index
        index = data.find(ESC, max(end, index + 1))
    return None


class EscapeSequenceBuffer:
    """Withholds a trailing partial escape sequence until the next chunk completes it."""

    def __init__(self, max_carry: int = DEFAULT_MAX_CARRY) -> None:
        if max_carry < 1:
            raise ValueError(f"max_carry must be positive: {max_carry}")
        self.max_carry = max_carry
        self._carry = ""

    @property
    def pending(self) -> str:
        return self._carry

    def append(self, chunk: str) -> AppendResult:
        data = self._carry + chunk
        self._carry = ""
        start = find_incomplete_sequence(data)
        if start is None:
            return AppendResult(complete=data, has_incomplete=False)
        carry = data[start:]
        if len(carry) > self.max_carry:
            # Never-terminated sequence: give it up as literal text.
            return AppendResult(complete=data, has_incomplete=False)
        self._carry = carry
        return AppendResult(complete=data[:start], has_incomplete=True)

    def clear(self) -> None:
        self._carry = ""
