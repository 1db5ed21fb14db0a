"""Shared fixtures for the cyberchat test suite.

The broadcast channel registry is process-global; it is reset around every
test so channels opened by one test never receive another test's messages.
HTTP is never touched: generation and search are replaced by fakes that
replay canned server-sent event bytes.
"""

import json

import pytest

from cyberchat.config import ChatSettings
from cyberchat.generation import GenerationError
from cyberchat.schemas import SearchResponse
from cyberchat.settings_sync import BroadcastChannel, SettingsService
from cyberchat.store import MemoryStore
from cyberchat.stream import StreamSession
from cyberchat.transcript import TranscriptStore


@pytest.fixture(autouse=True)
def reset_broadcast_registry():
    BroadcastChannel.reset()
    yield
    BroadcastChannel.reset()


def sse_bytes(*contents: str, done: bool = True) -> bytes:
    """Frame contents as chat-completion delta events."""
    parts = [
        "data: " + json.dumps({"choices": [{"delta": {"content": c}, "finish_reason": None}]}, ensure_ascii=False) + "\n\n"
        for c in contents
    ]
    if done:
        parts.append("data: [DONE]\n\n")
    return "".join(parts).encode("utf-8")


class FakeResponse:
    """Stands in for a streamed requests.Response."""

    def __init__(self, chunks):
        self.chunks = list(chunks)
        self.close_calls = 0

    def iter_content(self, chunk_size=None):
        yield from self.chunks

    def close(self):
        self.close_calls += 1


class FakeGenerator:
    """Replays one scripted stream (or error) per stream_chat call."""

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.calls = []
        self.responses = []

    def stream_chat(self, settings, messages):
        self.calls.append({"settings": settings, "messages": messages})
        script = self.scripts.pop(0)
        if isinstance(script, Exception):
            raise script
        if isinstance(script, bytes):
            script = [script]
        response = FakeResponse(script)
        self.responses.append(response)
        return StreamSession(response)


class FakeSearch:
    def __init__(self, markdown="", error=None):
        self.markdown = markdown
        self.error = error
        self.queries = []

    def search(self, query):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return SearchResponse(search_results_markdown=self.markdown)


@pytest.fixture
def sse():
    return sse_bytes


@pytest.fixture
def fake_generator():
    return FakeGenerator


@pytest.fixture
def fake_search():
    return FakeSearch


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def generation_error():
    return GenerationError


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def transcript(memory_store):
    return TranscriptStore(memory_store)


@pytest.fixture
def settings_service(memory_store):
    return SettingsService(memory_store, default=ChatSettings(api_key="test-key"))
