"""Tests for the SSE re-framer: framing, skipping, terminal policy."""

import pytest

from forge.errors import UpstreamTransportError
from forge.reframer import NO_CODE_MESSAGE, SSEReframer, Skipped, reframe
from forge.schemas import CodeEvent, DoneEvent, ErrorEvent
from tests.fakes import FIXED_TS, delta


def _reframer(**kwargs) -> SSEReframer:
    return SSEReframer(clock=lambda: FIXED_TS, **kwargs)


def _feed_all(reframer: SSEReframer, parts: list[bytes]) -> list:
    events = []
    for part in parts:
        events.extend(reframer.feed(part))
    events.extend(reframer.flush())
    return events


async def _source(parts: list[bytes]):
    for part in parts:
        yield part


async def _collect(parts: list[bytes], **kwargs) -> list:
    return [event async for event in reframe(_source(parts), _reframer(**kwargs))]


def test_whole_lines_produce_code_and_done():
    body = (delta("function") + delta(" App") + delta(finish_reason="stop")).encode()
    events = _feed_all(_reframer(), [body])
    assert events == [
        CodeEvent(content="function"),
        CodeEvent(content=" App"),
        DoneEvent(timestamp=FIXED_TS),
    ]


def test_line_split_in_three_fragments_matches_whole_line():
    line = delta("const x = 1;").encode()
    whole = _feed_all(_reframer(), [line])

    fragments = [line[:7], line[7:30], line[30:]]
    split = _feed_all(_reframer(), fragments)

    assert split == whole == [CodeEvent(content="const x = 1;")]


def test_byte_at_a_time_matches_whole_stream():
    body = (delta("<div>") + delta("héllo ✨") + delta(finish_reason="stop")).encode()
    whole = _feed_all(_reframer(), [body])
    trickled = _feed_all(_reframer(), [body[i:i + 1] for i in range(len(body))])
    assert trickled == whole
    assert whole[1] == CodeEvent(content="héllo ✨")


def test_multibyte_character_split_across_reads():
    line = delta("✨").encode()
    cut = line.index("✨".encode()) + 1  # inside the 3-byte sequence
    events = _feed_all(_reframer(), [line[:cut], line[cut:]])
    assert events == [CodeEvent(content="✨")]


def test_done_sentinel_is_swallowed():
    assert _feed_all(_reframer(), [b"data: [DONE]\n\n"]) == []


def test_malformed_line_is_skipped_and_stream_continues():
    reframer = _reframer()
    events = _feed_all(reframer, [b"data: not-json\n\n", delta("ok").encode()])
    assert events == [CodeEvent(content="ok")]
    assert reframer.malformed_lines == 1


def test_non_object_payload_is_malformed():
    reframer = _reframer()
    assert _feed_all(reframer, [b"data: 42\n"]) == []
    assert reframer.malformed_lines == 1


def test_comment_and_event_lines_are_ignored():
    body = b": keep-alive\nevent: message\nid: 7\n" + delta("x").encode()
    assert _feed_all(_reframer(), [body]) == [CodeEvent(content="x")]


def test_crlf_line_endings():
    body = delta("a").replace("\n", "\r\n").encode()
    assert _feed_all(_reframer(), [body]) == [CodeEvent(content="a")]


def test_empty_content_emits_nothing():
    assert _feed_all(_reframer(), [delta("").encode(), delta().encode()]) == []


def test_content_and_stop_in_same_chunk_keeps_order():
    events = _feed_all(_reframer(), [delta("}", finish_reason="stop").encode()])
    assert events == [CodeEvent(content="}"), DoneEvent(timestamp=FIXED_TS)]


def test_other_finish_reason_is_not_done():
    assert _feed_all(_reframer(), [delta(finish_reason="length").encode()]) == []


def test_provider_error_payload_becomes_error_event():
    body = b'data: {"error": {"message": "context length exceeded"}}\n'
    assert _feed_all(_reframer(), [body]) == [ErrorEvent(error="context length exceeded")]


def test_final_unterminated_line_is_processed_on_flush():
    reframer = _reframer()
    line = delta("tail").rstrip("\n").encode()
    assert reframer.feed(line) == []
    assert reframer.flush() == [CodeEvent(content="tail")]


def test_pending_line_over_limit_fails_stream():
    reframer = _reframer(max_pending_bytes=64)
    reframer.feed(b"data: " + b"x" * 40)
    with pytest.raises(UpstreamTransportError, match="exceeded 64 bytes"):
        reframer.feed(b"x" * 40)


def test_complete_long_lines_do_not_count_as_pending():
    reframer = _reframer(max_pending_bytes=64)
    events = reframer.feed(delta("y" * 200).encode())
    assert events == [CodeEvent(content="y" * 200)]


def test_parse_line_skip_reasons():
    reframer = _reframer()
    assert reframer.parse_line("   ") == Skipped("empty")
    assert reframer.parse_line("event: ping") == Skipped("not-data")
    assert reframer.parse_line("data: [DONE]") == Skipped("sentinel")
    malformed = reframer.parse_line("data: {oops")
    assert isinstance(malformed, Skipped)
    assert malformed.reason == "malformed"
    assert malformed.error is not None


@pytest.mark.asyncio
async def test_reframe_accumulates_function_app_with_one_done(standard_chunks):
    events = await _collect(standard_chunks)
    code = "".join(e.content for e in events if isinstance(e, CodeEvent))
    assert code == "function App"
    assert sum(isinstance(e, DoneEvent) for e in events) == 1
    assert isinstance(events[-1], DoneEvent)


@pytest.mark.asyncio
async def test_reframe_stops_reading_after_terminal_event():
    consumed = []

    async def source():
        for part in [delta("a", finish_reason="stop").encode(), delta("late").encode()]:
            consumed.append(part)
            yield part

    events = [e async for e in reframe(source(), _reframer())]
    assert events == [CodeEvent(content="a"), DoneEvent(timestamp=FIXED_TS)]
    assert len(consumed) == 1


@pytest.mark.asyncio
async def test_reframe_silent_close_after_code_is_done():
    events = await _collect([delta("partial").encode()])
    assert events == [CodeEvent(content="partial"), DoneEvent(timestamp=FIXED_TS)]


@pytest.mark.asyncio
async def test_reframe_silent_close_without_code_is_error():
    events = await _collect([b"data: [DONE]\n\n"])
    assert events == [ErrorEvent(error=NO_CODE_MESSAGE)]


@pytest.mark.asyncio
async def test_reframe_is_deterministic_across_runs(standard_chunks):
    parts = [b"".join(standard_chunks)[i:i + 5] for i in range(0, len(b"".join(standard_chunks)), 5)]
    first = await _collect(parts)
    second = await _collect(parts)
    assert first == second
    assert len(first) == 3
