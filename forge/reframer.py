"""SSE re-framer — provider chat-completion SSE bytes in, relay events out.

Bytes are decoded incrementally so multi-byte characters split across reads
survive, lines are cut on newlines with the trailing partial line carried
over to the next read, and every complete ``data:`` line is turned into zero
or more relay events. A line that cannot be parsed is skipped; the rest of
the stream still flows.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable
from dataclasses import dataclass
from typing import Union

from pydantic import ValidationError

from forge.errors import MalformedUpstreamPayload, UpstreamTransportError
from forge.schemas import CodeEvent, DoneEvent, ErrorEvent, UpstreamChunk, utc_timestamp

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
SENTINEL = "[DONE]"
STOP_REASON = "stop"
NO_CODE_MESSAGE = "No code was generated"
DEFAULT_MAX_PENDING_BYTES = 1024 * 1024

RelayEventT = Union[CodeEvent, DoneEvent, ErrorEvent]


@dataclass(frozen=True)
class Skipped:
    """A line that produced no events.

    reason: "empty" | "not-data" | "sentinel" | "malformed"
    """

    reason: str
    error: MalformedUpstreamPayload | None = None


LineResult = Union[tuple[RelayEventT, ...], Skipped]


class SSEReframer:
    """Per-request re-framer. Holds only the decode buffer and decoder state."""

    def __init__(
        self,
        max_pending_bytes: int = DEFAULT_MAX_PENDING_BYTES,
        clock: Callable[[], str] = utc_timestamp,
    ) -> None:
        self.max_pending_bytes = max_pending_bytes
        self.clock = clock
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.malformed_lines = 0

    def feed(self, chunk: bytes) -> list[RelayEventT]:
        """Consume one network read and return the events of every line it completed."""
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        self._check_pending()
        return self._process(lines)

    def flush(self) -> list[RelayEventT]:
        """End of data: decode what is left and process the final unterminated line."""
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        return self._process(rest.split("\n"))

    def _check_pending(self) -> None:
        # Encoded length is only computed once the char count could exceed the cap.
        pending = self._buffer
        if len(pending) * 4 > self.max_pending_bytes and len(pending.encode("utf-8")) > self.max_pending_bytes:
            raise UpstreamTransportError(
                f"Upstream line exceeded {self.max_pending_bytes} bytes"
            )

    def _process(self, lines: list[str]) -> list[RelayEventT]:
        events: list[RelayEventT] = []
        for line in lines:
            result = self.parse_line(line)
            if isinstance(result, Skipped):
                if result.error is not None:
                    self.malformed_lines += 1
                    logger.warning(f"Skipping malformed upstream line: {result.error}")
                continue
            events.extend(result)
        return events

    def parse_line(self, raw: str) -> LineResult:
        """Turn one complete line into its events, or a Skipped marker."""
        line = raw.strip()
        if not line:
            return Skipped("empty")
        if not line.startswith(DATA_PREFIX):
            return Skipped("not-data")

        data = line[len(DATA_PREFIX):].strip()
        if data == SENTINEL:
            return Skipped("sentinel")

        try:
            chunk = UpstreamChunk.model_validate(json.loads(data))
        except (json.JSONDecodeError, ValidationError) as e:
            snippet = data[:120]
            return Skipped("malformed", MalformedUpstreamPayload(f"{snippet!r}: {e.__class__.__name__}"))

        error = chunk.error_message()
        if error:
            return (ErrorEvent(error=error),)

        if not chunk.choices:
            return ()

        choice = chunk.choices[0]
        events: list[RelayEventT] = []
        if choice.delta.content:
            events.append(CodeEvent(content=choice.delta.content))
        if choice.finish_reason == STOP_REASON:
            events.append(DoneEvent(timestamp=self.clock()))
        return tuple(events)


async def reframe(
    chunks: AsyncIterable[bytes],
    reframer: SSEReframer | None = None,
) -> AsyncIterator[RelayEventT]:
    """Drive a re-framer over a byte source and yield relay events in order.

    Exactly one terminal event is produced. Once it is yielded the source is
    no longer read. If the source ends without one, the stream is closed with
    ``done`` when code was seen, otherwise with an ``error``.
    """
    reframer = reframer or SSEReframer()
    saw_code = False

    async for chunk in chunks:
        for event in reframer.feed(chunk):
            yield event
            if event.terminal:
                return
            saw_code = True

    for event in reframer.flush():
        yield event
        if event.terminal:
            return
        saw_code = True

    if saw_code:
        yield DoneEvent(timestamp=reframer.clock())
    else:
        yield ErrorEvent(error=NO_CODE_MESSAGE)
