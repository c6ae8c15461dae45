"""Client accumulator — consumes the relay's SSE stream and grows the code buffer.

Mirrors what the browser page does, for scripts, the CLI and tests.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Union

import httpx
from pydantic import ValidationError

from forge.reframer import DATA_PREFIX, NO_CODE_MESSAGE
from forge.schemas import CodeEvent, DoneEvent, ErrorEvent, parse_relay_event

logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/generate"
DEFAULT_BASE_URL = "http://127.0.0.1:8000"
GENERIC_FAILURE = "Failed to generate app"

OnUpdate = Callable[[str], Union[Awaitable[None], None]]


class GenerationError(Exception):
    """The relay reported a failure, or the response was not a stream."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


@dataclass
class GenerationResult:
    code: str
    status: str  # "done" | "cancelled"
    code_events: int = 0
    timestamp: str | None = None


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return GENERIC_FAILURE
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return GENERIC_FAILURE


def parse_frame_line(line: str) -> CodeEvent | DoneEvent | ErrorEvent | None:
    """Parse one ``data:`` line from the relay. Anything else, or a bad payload, is None."""
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):].strip()
    try:
        return parse_relay_event(json.loads(payload))
    except (json.JSONDecodeError, ValidationError, TypeError) as e:
        logger.warning(f"Skipping unparseable relay frame {payload[:80]!r}: {e.__class__.__name__}")
        return None


class RelayClient:
    """Streams one generation at a time from a Forge relay.

    ``stop()`` ends the current generation without raising; ``generate``
    then returns a ``cancelled`` result holding whatever code had arrived.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_client
        self._timeout = timeout
        self._reader: asyncio.Task | None = None
        self._stopped = False
        self.buffer = ""
        self.code_events = 0

    @property
    def running(self) -> bool:
        return self._reader is not None and not self._reader.done()

    def stop(self) -> None:
        """User-initiated cancellation. Closes the connection to the relay."""
        if self.running:
            self._stopped = True
            self._reader.cancel()

    async def generate(self, prompt: str, on_update: OnUpdate | None = None) -> GenerationResult:
        self.buffer = ""
        self.code_events = 0
        self._stopped = False
        self._reader = asyncio.create_task(self._read(prompt, on_update))
        try:
            return await self._reader
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if self._stopped and not (current is not None and current.cancelling()):
                logger.info("Generation stopped")
                return GenerationResult(code=self.buffer, status="cancelled", code_events=self.code_events)
            raise
        finally:
            self._reader = None

    async def _read(self, prompt: str, on_update: OnUpdate | None) -> GenerationResult:
        client = self._http or httpx.AsyncClient(timeout=self._timeout)
        try:
            async with client.stream(
                "POST", f"{self._base_url}{GENERATE_PATH}", json={"prompt": prompt}
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise GenerationError(_error_message(response), status=response.status_code)

                decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
                pending = ""
                async for chunk in response.aiter_bytes():
                    pending += decoder.decode(chunk)
                    *lines, pending = pending.split("\n")
                    for line in lines:
                        result = await self._handle(line, on_update)
                        if result is not None:
                            return result

                pending += decoder.decode(b"", final=True)
                for line in pending.split("\n"):
                    result = await self._handle(line, on_update)
                    if result is not None:
                        return result
        finally:
            if self._http is None:
                await client.aclose()

        # Stream closed without a terminal event.
        if self.buffer:
            return GenerationResult(code=self.buffer, status="done", code_events=self.code_events)
        raise GenerationError(NO_CODE_MESSAGE)

    async def _handle(self, line: str, on_update: OnUpdate | None) -> GenerationResult | None:
        event = parse_frame_line(line)
        if event is None:
            return None
        if isinstance(event, ErrorEvent):
            raise GenerationError(event.error or GENERIC_FAILURE)
        if isinstance(event, DoneEvent):
            return GenerationResult(
                code=self.buffer,
                status="done",
                code_events=self.code_events,
                timestamp=event.timestamp,
            )
        if event.content:
            self.buffer += event.content
            self.code_events += 1
            if on_update is not None:
                maybe = on_update(self.buffer)
                if asyncio.iscoroutine(maybe):
                    await maybe
        return None
