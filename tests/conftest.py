"""Pytest configuration and fixtures."""

import json
import os
from collections.abc import Callable, Iterator
from typing import Any

import httpx
import pytest

# Set test environment variables before importing app modules
os.environ.setdefault("OPENAI_API_KEY", "sk-test-key")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("MOCK_OPENAI", "false")

from brainstormer_api.config import Settings  # noqa: E402


@pytest.fixture(autouse=True)
def reset_caches() -> Iterator[None]:
    """Reset cached settings, the rate limiter and the OpenAI client before each test."""
    from brainstormer_api.config import get_settings
    from brainstormer_api.openai_client import reset_openai_client
    from brainstormer_api.rate_limiter import reset_rate_limiter

    get_settings.cache_clear()
    reset_rate_limiter()
    reset_openai_client()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    reset_openai_client()


@pytest.fixture
def mock_settings(monkeypatch: pytest.MonkeyPatch) -> Callable[..., Settings]:
    """Fixture to set test settings."""

    def _mock_settings(**kwargs: str) -> Settings:
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        from brainstormer_api.config import get_settings

        get_settings.cache_clear()
        return get_settings()

    return _mock_settings


def completion_body(content: str | None, total_tokens: int = 42) -> dict[str, Any]:
    """Build an OpenAI chat-completions response body."""
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 30, "completion_tokens": 12, "total_tokens": total_tokens},
    }


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)

    @property
    def last_payload(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def install_openai() -> Callable[..., RecordingTransport]:
    """Install a global OpenAI client backed by a mock transport.

    Accepts either a handler or ``content``/``status_code`` for a canned reply.
    """
    import brainstormer_api.openai_client as openai_client_module
    from brainstormer_api.openai_client import OpenAIClient

    def _install(
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
        content: str | None = None,
        status_code: int = 200,
    ) -> RecordingTransport:
        if handler is None:

            def handler(request: httpx.Request) -> httpx.Response:
                if status_code != 200:
                    return httpx.Response(
                        status_code, json={"error": {"message": "upstream exploded"}}
                    )
                return httpx.Response(200, json=completion_body(content))

        transport = RecordingTransport(handler)
        openai_client_module._openai_client = OpenAIClient(
            api_key="sk-test-key", transport=transport
        )
        return transport

    return _install
