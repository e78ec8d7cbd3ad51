"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from pydantic import TypeAdapter

from askly.chat.models import TopicDetectionResult
from askly.chat.orchestrator import ConversationOrchestrator
from askly.chat.repository import ChatRepository
from askly.storage.kv import InMemoryStore


class ScriptedGateway:
    """Model gateway that replays canned answers and records every call.

    Attributes set by tests:
        fragments: Text chunks streamed for each reply.
        stream_error: Raised by ``stream_completion`` after ``fail_after`` chunks.
        topic: Topic-detection answer (dict), or an exception to raise.
        memories: Memory-extraction answer (list), or an exception to raise.
        title: Title text, or an exception to raise.
        stream_gate: When set, streaming waits on it before the first chunk.
        pause_gate: When set, streaming waits on it after ``pause_after`` chunks
            and sets ``paused`` while waiting.
    """

    def __init__(self) -> None:
        self.fragments: list[str] = ["Hello", " there", "!"]
        self.stream_error: Exception | None = None
        self.fail_after = 0
        self.topic: Any = {"topic_changed": False, "new_topic": None}
        self.memories: Any = []
        self.title: Any = "Friendly Greeting Chat"
        self.stream_gate: asyncio.Event | None = None
        self.pause_gate: asyncio.Event | None = None
        self.pause_after = 1
        self.paused = asyncio.Event()
        self.analysis_delay = 0.01

        self.stream_calls: list[dict[str, Any]] = []
        self.structured_prompts: list[str] = []
        self.text_prompts: list[str] = []
        self.max_concurrent_analyses = 0
        self._active_analyses = 0

    async def stream_completion(self, history, memories, topic, on_fragment) -> str:
        self.stream_calls.append(
            {"history": list(history), "memories": list(memories), "topic": topic}
        )
        if self.stream_gate is not None:
            await self.stream_gate.wait()
        text = ""
        for idx, fragment in enumerate(self.fragments):
            if self.pause_gate is not None and idx == self.pause_after:
                self.paused.set()
                await self.pause_gate.wait()
            if self.stream_error is not None and idx == self.fail_after:
                raise self.stream_error
            text += fragment
            await on_fragment(fragment)
        if self.stream_error is not None:
            raise self.stream_error
        return text

    async def structured_completion(self, prompt: str, schema: Any) -> Any:
        self.structured_prompts.append(prompt)
        self._active_analyses += 1
        self.max_concurrent_analyses = max(
            self.max_concurrent_analyses, self._active_analyses
        )
        try:
            await asyncio.sleep(self.analysis_delay)
            answer = self.topic if schema is TopicDetectionResult else self.memories
            if isinstance(answer, Exception):
                raise answer
            return TypeAdapter(schema).validate_python(answer)
        finally:
            self._active_analyses -= 1

    async def text_completion(self, prompt: str) -> str:
        self.text_prompts.append(prompt)
        await asyncio.sleep(0)
        if isinstance(self.title, Exception):
            raise self.title
        return self.title


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def repository(store: InMemoryStore) -> ChatRepository:
    return ChatRepository(store)


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
async def orchestrator(
    repository: ChatRepository, gateway: ScriptedGateway
) -> ConversationOrchestrator:
    """A started orchestrator on an empty in-memory store."""
    orch = ConversationOrchestrator(repository, gateway)
    await orch.start()
    return orch
