"""
Pytest fixtures shared across the test suite.

Provides fakes for the collaborators the chat core talks to: a controllable
clock, a knowledge search, and a completion client that never touches the
network.
"""

import sys
from pathlib import Path

import pytest

BASE_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(BASE_DIR))

from assistant_chat.config import ChatConfig, ChatLLMConfig  # noqa: E402
from assistant_chat.llm_client import ChatLLMClient, UpstreamError  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeKnowledge:
    def __init__(self, results=None, error=None):
        self.results = results or []
        self.error = error
        self.queries = []
        self.ingested = []

    def search(self, query, top_k=3):
        self.queries.append((query, top_k))
        if self.error is not None:
            raise self.error
        return list(self.results)[:top_k]

    def ingest(self, documents):
        self.ingested.extend(documents)
        return len(documents)


class FakeLLMClient(ChatLLMClient):
    """Completion client returning canned tokens and recording prompts."""

    def __init__(self, tokens=None, *, api_key="test-key", error=None):
        super().__init__(ChatLLMConfig(api_key=api_key))
        self.tokens = tokens if tokens is not None else ["Hello", " there"]
        self.error = error
        self.calls = []

    def stream_completion(self, messages, *, model=None, model_kwargs=None):
        self.ensure_configured()
        self.calls.append({"messages": messages, "model": model, "stream": True})
        if self.error is not None:
            raise self.error
        return iter(self.tokens)

    def complete(self, messages, *, model=None, model_kwargs=None):
        self.ensure_configured()
        self.calls.append({"messages": messages, "model": model, "stream": False})
        if self.error is not None:
            raise self.error
        return {
            "choices": [{"message": {"role": "assistant", "content": "".join(self.tokens)}}],
            "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
        }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def knowledge():
    return FakeKnowledge()


@pytest.fixture
def llm_client():
    return FakeLLMClient()


@pytest.fixture
def chat_config():
    return ChatConfig(llm=ChatLLMConfig(api_key="test-key"))


@pytest.fixture
def upstream_error():
    return UpstreamError(429, {"error": {"message": "rate limited"}})
