"""Anthropic-backed model gateway: streaming chat, JSON and plain-text completions."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import anthropic
from pydantic import TypeAdapter, ValidationError

from askly.chat.models import Role
from askly.config import settings
from askly.llm.gateway import EmptyResponseError, GatewayError, MalformedResponseError
from askly.llm.models import ModelManager
from askly.llm.prompt import build_system_prompt

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from askly.chat.models import Memory, Message

logger = logging.getLogger(__name__)

JSON_ONLY_SYSTEM = "You are a precise analysis engine. Reply with valid JSON only, no prose."


def to_api_messages(history: Sequence[Message]) -> list[dict[str, str]]:
    """Format messages for the Claude API.

    Claude expects alternating turns that start with the user, so leading
    assistant messages (the greeting) are dropped and consecutive turns
    from the same role are joined.
    """
    result: list[dict[str, str]] = []
    for msg in history:
        role = "user" if msg.role == Role.USER else "assistant"
        if not result and role == "assistant":
            continue
        if not msg.content:
            continue
        if result and result[-1]["role"] == role:
            result[-1]["content"] += f"\n\n{msg.content}"
        else:
            result.append({"role": role, "content": msg.content})
    return result


def parse_json_payload(text: str) -> Any:
    """Decode a JSON answer, tolerating markdown fences around it.

    Raises ``MalformedResponseError`` if nothing decodable is found.
    """
    stripped = text.strip()
    if not stripped:
        msg = "Empty structured response"
        raise MalformedResponseError(msg, raw=text)
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    # Fall back to the outermost object or array in the text
    for opener, closer in (("{", "}"), ("[", "]")):
        start = stripped.find(opener)
        end = stripped.rfind(closer) + 1
        if start >= 0 and end > start:
            try:
                return json.loads(stripped[start:end])
            except json.JSONDecodeError:
                continue
    msg = "Structured response is not valid JSON"
    raise MalformedResponseError(msg, raw=text)


class AnthropicGateway:
    """Model gateway over the Anthropic Messages API.

    The SDK client is created lazily so constructing the gateway never needs
    network access; pass *client* to inject a fake.
    """

    def __init__(self, client: anthropic.AsyncAnthropic | None = None) -> None:
        self._client = client

    def _get_client(self) -> anthropic.AsyncAnthropic:
        """Lazily initialize the Anthropic client."""
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        return self._client

    # -- Streaming chat --------------------------------------------------------

    async def stream_completion(
        self,
        history: Sequence[Message],
        memories: Sequence[Memory],
        topic: str | None,
        on_fragment: Callable[[str], Awaitable[None]],
    ) -> str:
        """Stream a reply to *history*, awaiting *on_fragment* per text chunk.

        Args:
            history: Recent conversation, oldest first, ending with the user turn.
            memories: Everything Askly remembers about the user.
            topic: Current conversation topic, if known.
            on_fragment: Async callback receiving each text chunk in order.

        Returns:
            The complete reply text.
        """
        messages = to_api_messages(history)
        if not messages:
            msg = "No user message to reply to"
            raise GatewayError(msg)

        kwargs: dict[str, Any] = {
            "model": ModelManager.get().get_chat_model(),
            "max_tokens": settings.max_tokens,
            "system": build_system_prompt(memories, topic),
            "messages": messages,
        }

        full_text = ""
        try:
            async with self._get_client().messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    if not text:
                        continue
                    full_text += text
                    await on_fragment(text)
        except anthropic.APIError as exc:
            msg = f"Chat completion failed: {exc}"
            raise GatewayError(msg) from exc

        if not full_text:
            msg = "Chat completion returned no text"
            raise EmptyResponseError(msg)
        return full_text

    # -- Single-shot completions -----------------------------------------------

    async def _complete(self, prompt: str, *, model: str, system: str | None = None) -> str:
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": 1024,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system is not None:
            kwargs["system"] = system
        try:
            response = await self._get_client().messages.create(**kwargs)
        except anthropic.APIError as exc:
            msg = f"Completion failed: {exc}"
            raise GatewayError(msg) from exc
        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )

    async def structured_completion(self, prompt: str, schema: Any) -> Any:
        """Ask for JSON and validate it against *schema* (any pydantic-compatible type)."""
        text = await self._complete(
            prompt,
            model=ModelManager.get().get_reasoning_model(),
            system=JSON_ONLY_SYSTEM,
        )
        data = parse_json_payload(text)
        try:
            return TypeAdapter(schema).validate_python(data)
        except ValidationError as exc:
            msg = f"Structured response does not match {schema!r}"
            raise MalformedResponseError(msg, raw=text) from exc

    async def text_completion(self, prompt: str) -> str:
        """Single-shot plain-text completion with the chat model."""
        return await self._complete(prompt, model=ModelManager.get().get_chat_model())
