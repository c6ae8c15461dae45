"""Pytest fixtures and config."""

import pytest

from tests.fakes import TEST_API_KEY, delta


@pytest.fixture(autouse=True)
def env_cleanup(monkeypatch):
    """Never talk to the real provider with a real key."""
    monkeypatch.setenv("CEREBRAS_API_KEY", TEST_API_KEY)
    monkeypatch.delenv("FORGE_CONFIG", raising=False)
    yield


@pytest.fixture
def standard_chunks() -> list[bytes]:
    return [
        delta("function").encode(),
        delta(" App").encode(),
        delta(finish_reason="stop").encode(),
        b"data: [DONE]\n\n",
    ]
