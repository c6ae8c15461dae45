"""Request/response models — the contract between relay, provider and clients."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-01-01T12:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class GenerateRequest(BaseModel):
    """Incoming request body. Emptiness is checked by the relay, not here,
    so a missing prompt maps to the same 400 as a blank one."""

    prompt: Any = None


class PreviewRequest(BaseModel):
    code: str = ""


# ---------------------------------------------------------------------------
# Relay events: the stable SSE protocol sent to the browser
# ---------------------------------------------------------------------------


class _RelayEventBase(BaseModel):
    def to_sse(self) -> str:
        """Render as a single SSE frame: ``data: <json>\\n\\n``."""
        payload = json.dumps(self.model_dump(), ensure_ascii=False, separators=(",", ":"))
        return f"data: {payload}\n\n"

    @property
    def terminal(self) -> bool:
        return False


class CodeEvent(_RelayEventBase):
    stage: Literal["code"] = "code"
    content: str


class DoneEvent(_RelayEventBase):
    stage: Literal["done"] = "done"
    timestamp: str = Field(default_factory=utc_timestamp)

    @property
    def terminal(self) -> bool:
        return True


class ErrorEvent(_RelayEventBase):
    stage: Literal["error"] = "error"
    error: str

    @property
    def terminal(self) -> bool:
        return True


RelayEvent = Annotated[
    Union[CodeEvent, DoneEvent, ErrorEvent],
    Field(discriminator="stage"),
]

_relay_event_adapter: TypeAdapter[RelayEvent] = TypeAdapter(RelayEvent)


def parse_relay_event(data: dict) -> CodeEvent | DoneEvent | ErrorEvent:
    """Validate a decoded payload into one of the relay event types.

    Raises pydantic.ValidationError for unknown stages or missing fields.
    """
    return _relay_event_adapter.validate_python(data)


# ---------------------------------------------------------------------------
# Upstream chat-completion delta chunks
# ---------------------------------------------------------------------------


class UpstreamDelta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content: str | None = None


class UpstreamChoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    delta: UpstreamDelta = Field(default_factory=UpstreamDelta)
    finish_reason: str | None = None


class UpstreamChunk(BaseModel):
    """One provider SSE payload. ``error`` is set when the provider reports
    a failure in-band instead of a delta."""

    model_config = ConfigDict(extra="ignore")

    choices: list[UpstreamChoice] = []
    error: Any = None

    def error_message(self) -> str | None:
        if not self.error:
            return None
        if isinstance(self.error, dict):
            return str(self.error.get("message") or self.error)
        return str(self.error)
