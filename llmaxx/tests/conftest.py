"""Pytest fixtures and config."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from llmaxx.providers.ollama import OllamaProvider

OLLAMA_URL = "http://ollama.test"


@pytest.fixture(autouse=True)
def env_cleanup(monkeypatch):
    """Avoid picking up real keys or endpoints from the developer's environment."""
    for var in (
        "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
        "GOOGLE_API_KEY",
        "OLLAMA_BASE_URL",
        "LLMAXX_ACTIVE_PROVIDER",
        "LLMAXX_ENV_PREFIX",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def ndjson() -> Callable[..., bytes]:
    def _encode(*frames: dict[str, Any]) -> bytes:
        return b"".join(json.dumps(f).encode("utf-8") + b"\n" for f in frames)

    return _encode


@pytest.fixture
def make_ollama() -> Callable[..., OllamaProvider]:
    """OllamaProvider whose HTTP calls go to the given handler instead of the network."""

    def _make(handler, **kwargs: Any) -> OllamaProvider:
        return OllamaProvider(OLLAMA_URL, transport=httpx.MockTransport(handler), **kwargs)

    return _make
