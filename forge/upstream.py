"""Upstream completion client — one streamed chat completion per request.

Requires: the credential named by ``upstream.api_key_env`` (CEREBRAS_API_KEY).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from forge.errors import UpstreamTransportError

if TYPE_CHECKING:
    from forge.config import ForgeConfig, GenerationConfig

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert React developer who creates beautiful, production-ready components.

CRITICAL REQUIREMENTS:
1. Use ONLY function syntax: function App() {}
2. Use React.useState, React.useEffect, React.useCallback (with React. prefix)
3. Use Tailwind CSS for ALL styling: gradients, shadows, rounded corners, smooth transitions
4. Component must be fully functional and interactive
5. NO imports, NO exports - ONLY the function declaration
6. Return ONLY the component code, nothing else
7. Use semantic HTML5 elements and ARIA attributes for accessibility
8. Make it fully responsive with a mobile-first approach
9. Include loading states, error handling and visual feedback for all user interactions

DESIGN STANDARDS:
- Color palettes: vibrant gradients (purple, pink, blue, orange combinations)
- Spacing: generous padding and margins
- Typography: clear hierarchy with varying font sizes and weights
- Interactive elements: hover effects, active states, focus rings
- Cards: shadows, borders and rounded corners
- Forms: validation feedback with colors and icons

Return ONLY the complete React component function, nothing else."""

_ERROR_BODY_LIMIT = 500


def build_payload(prompt: str, generation: GenerationConfig) -> dict:
    """Build the chat-completion request body for one prompt."""
    payload = {
        "model": generation.model,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": f"Create a React component: {prompt}"},
        ],
        "stream": True,
        "max_completion_tokens": generation.max_completion_tokens,
        "temperature": generation.temperature,
        "top_p": generation.top_p,
    }
    if generation.reasoning_effort:
        payload["reasoning_effort"] = generation.reasoning_effort
    return payload


class UpstreamClient:
    """Opens streamed completions against the configured provider.

    The ``httpx.AsyncClient`` is owned by the caller (the app lifespan) and
    shared across requests; each call opens its own response.
    """

    def __init__(self, http_client: httpx.AsyncClient, config: ForgeConfig) -> None:
        self._http = http_client
        self._config = config

    async def open_stream(self, prompt: str, api_key: str) -> httpx.Response:
        """Send the completion request and return the response with its body unread.

        The caller must ``aclose()`` the returned response.
        Raises UpstreamTransportError on non-2xx status or transport failure.
        """
        url = self._config.upstream.url
        request = self._http.build_request(
            "POST",
            url,
            json=build_payload(prompt, self._config.generation),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
        )

        try:
            response = await self._http.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise UpstreamTransportError(f"Upstream API request timed out: {e}") from e
        except httpx.TransportError as e:
            raise UpstreamTransportError(f"Upstream API network error: {e}") from e

        if response.is_success:
            return response

        try:
            body = (await response.aread()).decode("utf-8", errors="replace")
        except httpx.HTTPError:
            body = ""
        finally:
            await response.aclose()

        body = body[:_ERROR_BODY_LIMIT]
        logger.error(f"Upstream API error: {response.status_code} {body}")
        raise UpstreamTransportError(
            f"Upstream API error: {response.status_code} - {body}",
            status=response.status_code,
        )
