from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from invokelauncher.terminal.ansi_buffer import EscapeSequenceBuffer, find_incomplete_sequence
from invokelauncher.terminal.history import SlidingBuffer

_FRAGMENTS = st.sampled_from(
    [
        "a",
        "text ",
        "\r\n",
        "\x1b",
        "[",
        "31",
        ";",
        "m",
        "\x1b[0m",
        "]0;title",
        "\x07",
        "\\",
        "(B",
    ]
)
_CHUNKS = st.lists(st.lists(_FRAGMENTS, max_size=6).map("".join), max_size=20)


@given(_CHUNKS)
def test_concatenated_output_reproduces_input(chunks: list[str]) -> None:
    buffer = EscapeSequenceBuffer(max_carry=10_000)

    emitted = "".join(buffer.append(chunk).complete for chunk in chunks)

    assert emitted + buffer.pending == "".join(chunks)


@given(_CHUNKS)
def test_output_is_split_exactly_at_open_sequence(chunks: list[str]) -> None:
    buffer = EscapeSequenceBuffer(max_carry=10_000)

    for chunk in chunks:
        result = buffer.append(chunk)
        combined = result.complete + buffer.pending
        if buffer.pending:
            assert buffer.pending.startswith("\x1b")
            assert find_incomplete_sequence(combined) == len(result.complete)
        else:
            assert find_incomplete_sequence(combined) is None
        assert result.has_incomplete == bool(buffer.pending)


@given(_CHUNKS, st.integers(min_value=1, max_value=16))
def test_carry_never_exceeds_limit(chunks: list[str], limit: int) -> None:
    buffer = EscapeSequenceBuffer(max_carry=limit)

    for chunk in chunks:
        buffer.append(chunk)
        assert len(buffer.pending) <= limit


@given(st.lists(st.integers()), st.integers(min_value=1, max_value=50))
def test_sliding_buffer_keeps_last_n_in_order(items: list[int], capacity: int) -> None:
    buffer: SlidingBuffer[int] = SlidingBuffer(capacity)

    for item in items:
        buffer.push(item)

    assert buffer.get() == items[-capacity:]
