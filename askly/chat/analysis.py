"""Background analysis of a finished turn: topic, memories and session title.

These calls only read the conversation. They raise ``GatewayError`` on
failure and leave catching to the orchestrator, which treats every
failure here as "no enrichment this turn".
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from askly.chat.models import DEFAULT_TITLE, MemoryExtractionItem, TopicDetectionResult
from askly.llm.gateway import MalformedResponseError
from askly.llm.prompt import build_extraction_prompt, build_title_prompt, build_topic_prompt

if TYPE_CHECKING:
    from collections.abc import Sequence

    from askly.chat.models import Message
    from askly.llm.gateway import ModelGateway

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 80


# -- Topic -------------------------------------------------------------------


async def detect_topic_change(
    gateway: ModelGateway,
    recent: Sequence[Message],
    current_topic: str | None,
) -> TopicDetectionResult | None:
    """Ask whether the conversation moved to a new topic.

    Returns None without calling the model when there are fewer than two
    messages to compare.
    """
    if len(recent) < 2:
        return None
    prompt = build_topic_prompt(recent, current_topic)
    return await gateway.structured_completion(prompt, TopicDetectionResult)


def resolve_new_topic(result: TopicDetectionResult | None) -> str | None:
    """The topic to switch to, or None when the analysis reports no usable change."""
    if result is None or not result.topic_changed:
        return None
    topic = (result.new_topic or "").strip()
    if not topic or topic.lower() in ("null", "none"):
        return None
    return topic


# -- Memories ----------------------------------------------------------------


def parse_extraction_items(raw: Any) -> list[MemoryExtractionItem]:
    """Validate extraction output item by item, skipping malformed entries.

    Accepts either a bare list or an object wrapping it under ``memories``.
    """
    if isinstance(raw, dict):
        raw = raw.get("memories", [])
    if not isinstance(raw, list):
        msg = f"Expected a list of memories, got {type(raw).__name__}"
        raise MalformedResponseError(msg)

    items: list[MemoryExtractionItem] = []
    for entry in raw:
        try:
            item = MemoryExtractionItem.model_validate(entry)
        except ValidationError:
            logger.warning("Skipping malformed memory item: %r", entry)
            continue
        content = item.content.strip()
        if not content:
            continue
        items.append(item.model_copy(update={"content": content}))
    return items


async def extract_memories(
    gateway: ModelGateway,
    user_message: str,
    assistant_response: str,
) -> list[MemoryExtractionItem]:
    """Ask the model what, if anything, from this exchange is worth remembering."""
    prompt = build_extraction_prompt(user_message, assistant_response)
    raw = await gateway.structured_completion(prompt, Any)
    return parse_extraction_items(raw)


# -- Title -------------------------------------------------------------------


def clean_title(text: str | None) -> str:
    """Normalise a generated title, falling back to the default when empty."""
    lines = (text or "").strip().splitlines()
    title = lines[0].strip().strip("\"'").strip() if lines else ""
    if not title:
        return DEFAULT_TITLE
    return title[:MAX_TITLE_LENGTH]


async def generate_title(gateway: ModelGateway, opening: Sequence[Message]) -> str:
    """Summarise the opening messages of a conversation as a short title."""
    text = await gateway.text_completion(build_title_prompt(opening))
    return clean_title(text)
