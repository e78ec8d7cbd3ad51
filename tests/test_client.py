"""Tests for the Anthropic gateway: streaming, structured and text completions."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import pytest

from askly.chat.models import Memory, MemoryType, Message, Role, TopicDetectionResult
from askly.llm.client import (
    JSON_ONLY_SYSTEM,
    AnthropicGateway,
    parse_json_payload,
    to_api_messages,
)
from askly.llm.gateway import EmptyResponseError, GatewayError, MalformedResponseError

# ---------------------------------------------------------------------------
# Helpers: mock the Anthropic client
# ---------------------------------------------------------------------------


@dataclass
class _FakeBlock:
    type: str
    text: str = ""


def _api_error() -> anthropic.APIStatusError:
    return anthropic.APIStatusError(
        message="Overloaded",
        response=MagicMock(status_code=529, headers={}),
        body={"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}},
    )


class _FakeStream:
    """Simulates an anthropic streaming context manager."""

    def __init__(self, chunks: list[str], error: Exception | None = None) -> None:
        self._chunks = chunks
        self._error = error

    @property
    async def text_stream(self):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error


def _streaming_client(stream: _FakeStream) -> tuple[MagicMock, list[dict[str, Any]]]:
    client = MagicMock()
    calls: list[dict[str, Any]] = []

    @asynccontextmanager
    async def _stream(**kwargs):
        calls.append(kwargs)
        yield stream

    client.messages.stream = _stream
    return client, calls


def _creating_client(*blocks: _FakeBlock) -> MagicMock:
    response = MagicMock()
    response.content = list(blocks)
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=response)
    return client


@pytest.fixture
def model_mgr():
    mgr = MagicMock()
    mgr.get_chat_model.return_value = "claude-chat-test"
    mgr.get_reasoning_model.return_value = "claude-reasoning-test"
    with patch("askly.llm.models.ModelManager.get", return_value=mgr):
        yield mgr


def _history(*pairs: tuple[Role, str]) -> list[Message]:
    return [Message(role=role, content=content) for role, content in pairs]


# ---------------------------------------------------------------------------
# to_api_messages
# ---------------------------------------------------------------------------


def test_to_api_messages_maps_roles() -> None:
    history = _history((Role.USER, "hi"), (Role.MODEL, "hello"), (Role.USER, "how are you?"))
    assert to_api_messages(history) == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "how are you?"},
    ]


def test_to_api_messages_drops_leading_greeting() -> None:
    history = _history((Role.MODEL, "Hello! I'm Askly."), (Role.USER, "hi"))
    assert to_api_messages(history) == [{"role": "user", "content": "hi"}]


def test_to_api_messages_merges_consecutive_turns() -> None:
    history = _history((Role.USER, "one"), (Role.USER, "two"), (Role.MODEL, ""))
    assert to_api_messages(history) == [{"role": "user", "content": "one\n\ntwo"}]


# ---------------------------------------------------------------------------
# parse_json_payload
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ('{"topic_changed": false}', {"topic_changed": False}),
        ("[]", []),
        ('```json\n{"a": 1}\n```', {"a": 1}),
        ('Sure! Here it is: [{"content": "x"}] Hope that helps.', [{"content": "x"}]),
    ],
)
def test_parse_json_payload(text: str, expected: Any) -> None:
    assert parse_json_payload(text) == expected


@pytest.mark.parametrize("text", ["", "   ", "no json here", "{broken"])
def test_parse_json_payload_rejects_garbage(text: str) -> None:
    with pytest.raises(MalformedResponseError) as exc_info:
        parse_json_payload(text)
    assert exc_info.value.raw == text


# ---------------------------------------------------------------------------
# stream_completion
# ---------------------------------------------------------------------------


async def test_stream_completion_forwards_fragments(model_mgr) -> None:
    client, calls = _streaming_client(_FakeStream(["Hel", "", "lo", "!"]))
    gateway = AnthropicGateway(client)
    received: list[str] = []

    async def on_fragment(text: str) -> None:
        received.append(text)

    memories = [Memory(type=MemoryType.PREFERENCE, content="Enjoys hiking", importance=0.8)]
    reply = await gateway.stream_completion(
        _history((Role.USER, "hi")), memories, "Outdoors", on_fragment
    )

    assert reply == "Hello!"
    assert received == ["Hel", "lo", "!"]
    kwargs = calls[0]
    assert kwargs["model"] == "claude-chat-test"
    assert kwargs["messages"] == [{"role": "user", "content": "hi"}]
    assert "Current Topic: Outdoors" in kwargs["system"]
    assert "- [PREFERENCE] Enjoys hiking" in kwargs["system"]


async def test_stream_completion_requires_user_turn(model_mgr) -> None:
    client, calls = _streaming_client(_FakeStream(["x"]))
    gateway = AnthropicGateway(client)

    with pytest.raises(GatewayError):
        await gateway.stream_completion(_history((Role.MODEL, "greeting")), [], None, AsyncMock())
    assert calls == []


async def test_stream_completion_wraps_api_errors(model_mgr) -> None:
    client, _ = _streaming_client(_FakeStream(["partial"], error=_api_error()))
    gateway = AnthropicGateway(client)
    on_fragment = AsyncMock()

    with pytest.raises(GatewayError) as exc_info:
        await gateway.stream_completion(_history((Role.USER, "hi")), [], None, on_fragment)

    assert isinstance(exc_info.value.__cause__, anthropic.APIError)
    on_fragment.assert_awaited_once_with("partial")


async def test_stream_completion_empty_reply(model_mgr) -> None:
    client, _ = _streaming_client(_FakeStream(["", ""]))
    gateway = AnthropicGateway(client)

    with pytest.raises(EmptyResponseError):
        await gateway.stream_completion(_history((Role.USER, "hi")), [], None, AsyncMock())


# ---------------------------------------------------------------------------
# structured_completion / text_completion
# ---------------------------------------------------------------------------


async def test_structured_completion_validates_schema(model_mgr) -> None:
    client = _creating_client(
        _FakeBlock(type="text", text='{"topic_changed": true, "new_topic": "Cooking"}')
    )
    gateway = AnthropicGateway(client)

    result = await gateway.structured_completion("prompt", TopicDetectionResult)

    assert result == TopicDetectionResult(topic_changed=True, new_topic="Cooking")
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["model"] == "claude-reasoning-test"
    assert kwargs["system"] == JSON_ONLY_SYSTEM
    assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]


async def test_structured_completion_schema_mismatch(model_mgr) -> None:
    client = _creating_client(_FakeBlock(type="text", text='{"topic_changed": "maybe?"}'))
    gateway = AnthropicGateway(client)

    with pytest.raises(MalformedResponseError):
        await gateway.structured_completion("prompt", TopicDetectionResult)


async def test_structured_completion_any_schema(model_mgr) -> None:
    client = _creating_client(_FakeBlock(type="text", text='[{"content": "x"}]'))
    gateway = AnthropicGateway(client)

    assert await gateway.structured_completion("prompt", Any) == [{"content": "x"}]


async def test_text_completion_joins_text_blocks(model_mgr) -> None:
    client = _creating_client(
        _FakeBlock(type="text", text="Weekend "),
        _FakeBlock(type="thinking"),
        _FakeBlock(type="text", text="Plans"),
    )
    gateway = AnthropicGateway(client)

    assert await gateway.text_completion("title please") == "Weekend Plans"
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["model"] == "claude-chat-test"
    assert "system" not in kwargs


async def test_completion_wraps_api_errors(model_mgr) -> None:
    client = MagicMock()
    client.messages.create = AsyncMock(side_effect=_api_error())
    gateway = AnthropicGateway(client)

    with pytest.raises(GatewayError):
        await gateway.text_completion("hi")
