"""Model gateway contract and its error types.

The orchestrator only talks to the remote model through these three calls,
so tests can substitute a scripted gateway for the Anthropic client.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from askly.chat.models import Memory, Message


class GatewayError(Exception):
    """The model provider or the transport to it failed."""


class MalformedResponseError(GatewayError):
    """The provider answered, but not with the structure that was asked for."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class EmptyResponseError(GatewayError):
    """A completion finished without producing any text."""


class ModelGateway(Protocol):
    async def stream_completion(
        self,
        history: Sequence[Message],
        memories: Sequence[Memory],
        topic: str | None,
        on_fragment: Callable[[str], Awaitable[None]],
    ) -> str:
        """Stream a chat reply, awaiting *on_fragment* per text fragment.

        Returns the full reply text (the concatenation of all fragments).
        """
        ...

    async def structured_completion(self, prompt: str, schema: Any) -> Any:
        """Return the provider's JSON answer validated against *schema*.

        Raises ``MalformedResponseError`` when the output cannot be parsed.
        """
        ...

    async def text_completion(self, prompt: str) -> str: ...
