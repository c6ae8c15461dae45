"""Prompt validation."""

from __future__ import annotations

from forge.errors import InvalidRequest

PROMPT_REQUIRED = "Prompt is required"


def validate_prompt(prompt: object, max_length: int) -> str:
    """Return the trimmed prompt.

    Raises InvalidRequest if it is missing, not a string, blank, or longer
    than ``max_length`` characters. The prompt is otherwise passed upstream
    untouched, markup included.
    """
    if not isinstance(prompt, str) or not prompt.strip():
        raise InvalidRequest(PROMPT_REQUIRED)

    trimmed = prompt.strip()
    if len(trimmed) > max_length:
        raise InvalidRequest(f"Prompt must be less than {max_length} characters")
    return trimmed
