"""Error taxonomy and the per-application error handler.

Errors raised before the response starts streaming carry the HTTP status
they map to. Anything after that point is reported in-band as an
``error`` relay event instead.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field

import httpx

from forge.schemas import utc_timestamp

logger = logging.getLogger(__name__)


class ForgeError(Exception):
    """Base error. ``status_code`` is used when the error happens pre-stream."""

    status_code = 500
    code = "UNKNOWN_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequest(ForgeError):
    status_code = 400
    code = "VALIDATION_ERROR"


class Misconfigured(ForgeError):
    status_code = 500
    code = "CONFIG_ERROR"


class UpstreamTransportError(ForgeError):
    """Non-2xx answer or connection failure from the completion provider."""

    status_code = 500
    code = "NETWORK_ERROR"

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class MalformedUpstreamPayload(ForgeError):
    """One upstream line that is not valid JSON. Recovered locally, never surfaced."""

    code = "MALFORMED_PAYLOAD"


USER_MESSAGES: dict[str, str] = {
    "API_401": "Invalid API key. Please check your configuration.",
    "API_403": "Access forbidden. Please check your API permissions.",
    "API_429": "Rate limit exceeded. Please try again later.",
    "API_500": "Server error. Please try again later.",
    "API_502": "Service temporarily unavailable. Please try again later.",
    "API_503": "Service overloaded. Please try again later.",
    "NETWORK_ERROR": "Network connection failed. Please check your internet connection.",
    "VALIDATION_ERROR": "Invalid input provided. Please check your input and try again.",
    "CONFIG_ERROR": "The server is not configured correctly.",
    "GENERATION_ERROR": "Failed to generate code. Please try again with a different prompt.",
    "TIMEOUT_ERROR": "Request timed out. Please try again.",
    "UNKNOWN_ERROR": "An unexpected error occurred. Please try again.",
}

# Seconds. Reported only; the relay never retries.
RETRY_DELAYS: dict[str, float] = {
    "NETWORK_ERROR": 1.0,
    "TIMEOUT_ERROR": 2.0,
    "API_429": 5.0,
    "API_502": 3.0,
    "API_503": 3.0,
}


@dataclass
class ErrorReport:
    code: str
    message: str
    context: str | None = None
    timestamp: str = field(default_factory=utc_timestamp)


class ErrorHandler:
    """Classifies, logs and counts errors for one application instance."""

    def __init__(self, max_errors_per_type: int = 10) -> None:
        self.max_errors_per_type = max_errors_per_type
        self._counts: Counter[str] = Counter()

    def classify(self, exc: BaseException) -> str:
        if isinstance(exc, UpstreamTransportError) and exc.status is not None:
            return f"API_{exc.status}"
        if isinstance(exc, httpx.TimeoutException):
            return "TIMEOUT_ERROR"
        if isinstance(exc, httpx.TransportError):
            return "NETWORK_ERROR"
        if isinstance(exc, ForgeError):
            return exc.code
        if "timeout" in str(exc).lower():
            return "TIMEOUT_ERROR"
        return "UNKNOWN_ERROR"

    def handle(self, exc: BaseException, context: str | None = None) -> ErrorReport:
        """Log the error, track its frequency, and return a report."""
        code = self.classify(exc)
        report = ErrorReport(code=code, message=str(exc), context=context)
        logger.error(f"Error handled: {code}: {exc}" + (f" ({context})" if context else ""))

        self._counts[code] += 1
        if self._counts[code] > self.max_errors_per_type:
            logger.warning(f"High error rate detected for: {code} ({self._counts[code]})")
        return report

    def user_message(self, code: str) -> str:
        return USER_MESSAGES.get(code, USER_MESSAGES["UNKNOWN_ERROR"])

    def is_recoverable(self, code: str) -> bool:
        return code in RETRY_DELAYS

    def retry_delay(self, code: str) -> float:
        return RETRY_DELAYS.get(code, 1.0)

    def statistics(self) -> dict[str, int]:
        return dict(self._counts)

    def clear(self) -> None:
        self._counts.clear()
