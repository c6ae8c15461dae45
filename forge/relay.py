"""Relay — bridges a generate request to the upstream stream and yields SSE frames.

Everything that can fail before the first byte is sent raises a ForgeError
so the endpoint can answer with a plain HTTP status. Once streaming has
begun, failures become a terminal ``error`` event.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import anyio
import httpx

from forge.errors import ForgeError, Misconfigured
from forge.reframer import SSEReframer, reframe
from forge.schemas import CodeEvent, DoneEvent, ErrorEvent
from forge.validation import validate_prompt

if TYPE_CHECKING:
    from forge.config import ForgeConfig
    from forge.errors import ErrorHandler
    from forge.upstream import UpstreamClient

logger = logging.getLogger(__name__)

GENERIC_STREAM_ERROR = "Generation failed"


@dataclass
class GenerationStats:
    """Timing and volume for one relayed generation."""

    started: float = field(default_factory=time.monotonic)
    first_code_at: float | None = None
    code_events: int = 0
    code_chars: int = 0
    malformed_lines: int = 0
    outcome: str = "pending"

    def record(self, event: CodeEvent | DoneEvent | ErrorEvent) -> None:
        if isinstance(event, CodeEvent):
            if self.first_code_at is None:
                self.first_code_at = time.monotonic()
            self.code_events += 1
            self.code_chars += len(event.content)
        else:
            self.outcome = event.stage

    @property
    def duration(self) -> float:
        return time.monotonic() - self.started

    @property
    def time_to_first_code(self) -> float | None:
        if self.first_code_at is None:
            return None
        return self.first_code_at - self.started


class RelayStream:
    """One in-flight generation: owns the upstream response until closed."""

    def __init__(
        self,
        response: httpx.Response,
        reframer: SSEReframer,
        errors: ErrorHandler,
    ) -> None:
        self._response = response
        self._reframer = reframer
        self._errors = errors
        self._closed = False
        self.stats = GenerationStats()

    @property
    def closed(self) -> bool:
        return self._closed

    async def frames(self) -> AsyncGenerator[str, None]:
        """Yield ``data: <json>\\n\\n`` frames until a terminal event.

        Closing this generator early (client disconnect) closes the upstream
        response, so no further upstream reads happen.
        """
        try:
            async for event in reframe(self._response.aiter_bytes(), self._reframer):
                self.stats.record(event)
                yield event.to_sse()
        except (ForgeError, httpx.HTTPError) as e:
            report = self._errors.handle(e, context="stream")
            event = ErrorEvent(error=report.message or GENERIC_STREAM_ERROR)
            self.stats.record(event)
            yield event.to_sse()
        finally:
            if self.stats.outcome == "pending":
                self.stats.outcome = "cancelled"
            # The surrounding scope may already be cancelled by a disconnect.
            with anyio.CancelScope(shield=True):
                await self.aclose()

    async def aclose(self) -> None:
        """Release the upstream connection. Safe to call more than once."""
        if self._closed:
            return
        await self._response.aclose()
        self._closed = True

        stats = self.stats
        stats.malformed_lines = self._reframer.malformed_lines
        ttfc = f"{stats.time_to_first_code:.2f}s" if stats.time_to_first_code is not None else "n/a"
        logger.info(
            f"Generation finished: outcome={stats.outcome}, "
            f"duration={stats.duration:.2f}s, first_code={ttfc}, "
            f"code_events={stats.code_events}, code_chars={stats.code_chars}, "
            f"malformed_lines={stats.malformed_lines}"
        )


class RelayService:
    """Validates requests and opens relay streams. One instance per application."""

    def __init__(
        self,
        config: ForgeConfig,
        upstream: UpstreamClient,
        errors: ErrorHandler,
    ) -> None:
        self._config = config
        self._upstream = upstream
        self._errors = errors

    async def open(self, prompt: object) -> RelayStream:
        """Validate, check the credential, and open the upstream stream.

        Raises InvalidRequest, Misconfigured or UpstreamTransportError; no
        upstream call is made for the first two.
        """
        try:
            cleaned = validate_prompt(prompt, self._config.prompt.max_length)
            api_key = self._config.api_key()
            if not api_key:
                raise Misconfigured(
                    "API key not configured. Please add "
                    f"{self._config.upstream.api_key_env} to your environment variables."
                )

            logger.info(f"Generation started: prompt_length={len(cleaned)}")
            response = await self._upstream.open_stream(cleaned, api_key)
        except ForgeError as e:
            self._errors.handle(e, context="pre-stream")
            raise

        reframer = SSEReframer(max_pending_bytes=self._config.stream.max_pending_line_bytes)
        return RelayStream(response, reframer, self._errors)
