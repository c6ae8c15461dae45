"""Fake upstream provider and helpers shared by the tests."""

from __future__ import annotations

import asyncio
import json

import httpx

from forge.config import ForgeConfig
from forge.errors import ErrorHandler
from forge.relay import RelayService
from forge.upstream import UpstreamClient

TEST_API_KEY = "csk-test-key-for-testing"
FIXED_TS = "2024-01-01T00:00:00.000Z"


def delta(content: str | None = None, finish_reason: str | None = None) -> str:
    """One provider SSE line, newline-terminated."""
    choice: dict = {"delta": {}}
    if content is not None:
        choice["delta"]["content"] = content
    if finish_reason is not None:
        choice["finish_reason"] = finish_reason
    return f"data: {json.dumps({'choices': [choice]})}\n\n"


class FakeUpstreamStream(httpx.AsyncByteStream):
    """Byte stream that records how far it was read and whether it was closed.

    ``hang`` blocks forever after the last chunk; ``error`` is raised instead.
    """

    def __init__(self, chunks: list[bytes], hang: bool = False, error: Exception | None = None) -> None:
        self.chunks = chunks
        self.hang = hang
        self.error = error
        self.reads = 0
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            self.reads += 1
            yield chunk
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.closed = True


class FakeUpstream:
    """httpx.MockTransport handler answering every request with one response."""

    def __init__(
        self,
        chunks: list[bytes] | None = None,
        status: int = 200,
        body: bytes = b"",
        hang: bool = False,
        error: Exception | None = None,
        raise_on_send: Exception | None = None,
    ) -> None:
        self.stream = FakeUpstreamStream(chunks or [], hang=hang, error=error)
        self.status = status
        self.body = body
        self.raise_on_send = raise_on_send
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_on_send is not None:
            raise self.raise_on_send
        if self.status != 200:
            return httpx.Response(self.status, content=self.body)
        return httpx.Response(200, stream=self.stream, headers={"Content-Type": "text/event-stream"})

    @property
    def calls(self) -> int:
        return len(self.requests)


def make_relay(
    upstream: FakeUpstream,
    config: ForgeConfig | None = None,
    errors: ErrorHandler | None = None,
) -> RelayService:
    config = config or ForgeConfig()
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    return RelayService(config, UpstreamClient(http_client, config), errors or ErrorHandler())


def parse_frames(body: str) -> list[dict]:
    """Decode a relay response body into its JSON payloads."""
    return [
        json.loads(line[len("data:"):].strip())
        for line in body.split("\n")
        if line.startswith("data:")
    ]
