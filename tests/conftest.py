"""Pytest configuration and fixtures for testing."""

import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from src.backend_client import BackendTransport
from src.config import ProxyConfig


def _build_config(**overrides: Any) -> ProxyConfig:
    values: Dict[str, Any] = {
        "backend_base_url": "https://backend.test",
        "backend_api_key": "sk-test-0123456789",
        "request_timeout_s": 5.0,
        "connect_timeout_s": 1.0,
        "backoff_base_s": 0.01,
        "backoff_max_s": 0.05,
    }
    values.update(overrides)
    return ProxyConfig(**values)


@pytest.fixture
def make_config() -> Callable[..., ProxyConfig]:
    """Factory for test configs; keyword arguments override fields."""
    return _build_config


@pytest.fixture
def config() -> ProxyConfig:
    return _build_config()


@pytest.fixture
def make_transport(make_config) -> Callable[..., BackendTransport]:
    """Factory building a BackendTransport over an ``httpx.MockTransport`` handler."""

    def factory(handler: Callable, config: Optional[ProxyConfig] = None, **overrides: Any) -> BackendTransport:
        cfg = config or make_config(**overrides)
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return BackendTransport(cfg, client)

    return factory


@pytest.fixture
def record_sleeps(monkeypatch) -> List[float]:
    """Replace the retry sleep with a recorder so tests run instantly."""
    delays: List[float] = []

    async def fake_sleep(delay_s: float, cancel=None) -> None:
        delays.append(delay_s)

    monkeypatch.setattr("src.http_retry.interruptible_sleep", fake_sleep)
    return delays


def sse_body(*payloads: Any, done: bool = True) -> bytes:
    """Build an SSE byte stream of ``data:`` events from dicts or strings."""
    frames = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        frames.append(f"data: {data}\n\n")
    if done:
        frames.append("data: [DONE]\n\n")
    return "".join(frames).encode("utf-8")


def chat_chunk(
    content: Optional[str] = None,
    finish_reason: Optional[str] = None,
    usage: Optional[Dict[str, int]] = None,
) -> Dict[str, Any]:
    """Build one Chat Completions stream chunk."""
    delta: Dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    chunk: Dict[str, Any] = {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": "claude-3-sonnet-20240229",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }
    if usage is not None:
        chunk["usage"] = usage
    return chunk


def chat_response(
    content: Any = "Hello!",
    finish_reason: Optional[str] = "stop",
    prompt_tokens: int = 5,
    completion_tokens: int = 7,
) -> Dict[str, Any]:
    """Build a non-streaming Chat Completions response."""
    return {
        "id": "chatcmpl-abc123",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "claude-3-sonnet-20240229",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": finish_reason,
            }
        ],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


@pytest.fixture
def sse():
    return sse_body


@pytest.fixture
def make_chunk():
    return chat_chunk


@pytest.fixture
def make_response():
    return chat_response
