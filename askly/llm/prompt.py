"""Prompt assembly for chat replies and background analysis."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from askly.chat.models import Memory, Message

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent.parent.parent / "config"

SYSTEM_INSTRUCTION = """\
You are Askly, a highly capable, context-aware AI assistant.
Your goal is to provide helpful, natural, and accurate responses.
You have access to a "memory" of the user's preferences and past context, \
which will be provided in the prompt if available.
Always adapt to the user's tone. If the user asks about what you remember, \
refer to the provided context."""

TOPIC_DETECTION_PROMPT = """\
Analyze if the conversation topic has changed based on the recent messages.
Respond ONLY with a JSON object:
{
    "topic_changed": true/false,
    "new_topic": "topic name or null"
}"""

MEMORY_EXTRACTION_PROMPT = """\
Analyze this conversation exchange and identify important information to \
remember about the user or the context.
Ignore trivial chit-chat. Focus on facts, preferences, goals, and names.
Respond ONLY with a JSON array:
[
    {
        "type": "preference|personal|fact|goal|context",
        "content": "information to remember",
        "importance": 0.0-1.0
    }
]"""

TITLE_PROMPT = (
    "Based on the following conversation start, generate a very short, concise "
    "title (3-6 words maximum). Do not use quotes. Conversation:\n"
)


def _read_config(filename: str) -> str:
    """Read a config markdown file, returning empty string if missing."""
    path = CONFIG_DIR / filename
    if path.exists():
        return path.read_text(encoding="utf-8")
    return ""


def format_memories(memories: Sequence[Memory]) -> str:
    """Format memories as ``- [TYPE] content`` lines."""
    return "\n".join(f"- [{m.type.value.upper()}] {m.content}" for m in memories)


def format_transcript(messages: Sequence[Message]) -> str:
    return "\n".join(f"{m.role.value}: {m.content}" for m in messages)


def build_system_prompt(memories: Sequence[Memory], topic: str | None) -> str:
    """Assemble the chat system prompt with topic and memory context.

    ``config/SYSTEM.md`` replaces the built-in instruction when present.
    """
    instruction = _read_config("SYSTEM.md").strip() or SYSTEM_INSTRUCTION
    context = (
        f"Current Topic: {topic or 'General'}\n"
        f"Relevant Memories:\n{format_memories(memories)}"
    )
    return f"{instruction}\n\n{context}"


def build_topic_prompt(recent: Sequence[Message], current_topic: str | None) -> str:
    return (
        f"{TOPIC_DETECTION_PROMPT}\n\n"
        f"Current Topic: {current_topic}\n\n"
        f"Recent History:\n{format_transcript(recent)}"
    )


def build_extraction_prompt(user_message: str, assistant_response: str) -> str:
    return (
        f"{MEMORY_EXTRACTION_PROMPT}\n\n"
        f"User: {user_message}\n"
        f"Assistant: {assistant_response}"
    )


def build_title_prompt(opening: Sequence[Message]) -> str:
    return f"{TITLE_PROMPT}{format_transcript(opening)}"
