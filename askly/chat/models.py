"""Data models for sessions, messages and memories."""

from __future__ import annotations

import math
import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

DEFAULT_TITLE = "New Conversation"

INITIAL_GREETING = (
    "Hello! I'm Askly. I can remember our context and conversations. What's on your mind?"
)

FALLBACK_REPLY = "I encountered an error connecting to my brain. Please try again."


def new_id() -> str:
    """Return a fresh opaque identifier."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


class Role(StrEnum):
    USER = "user"
    MODEL = "model"


class MemoryType(StrEnum):
    PREFERENCE = "preference"
    PERSONAL = "personal"
    FACT = "fact"
    GOAL = "goal"
    CONTEXT = "context"


def _clamp_importance(value: object) -> float:
    """Coerce a producer-supplied importance into [0, 1]. Missing or junk becomes 0."""
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return min(1.0, max(0.0, number))


class Message(BaseModel):
    """A single conversation turn."""

    id: str = Field(default_factory=new_id)
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class ConversationSession(BaseModel):
    """One persisted conversation thread."""

    id: str = Field(default_factory=new_id)
    title: str = DEFAULT_TITLE
    messages: list[Message] = Field(default_factory=list)
    topic: str | None = None
    last_updated: datetime = Field(default_factory=utcnow)

    @classmethod
    def create(cls, greeting: str | None = INITIAL_GREETING) -> ConversationSession:
        """Build a fresh session, optionally opening with the assistant greeting."""
        messages = [Message(role=Role.MODEL, content=greeting)] if greeting else []
        return cls(messages=messages)

    @property
    def has_default_title(self) -> bool:
        return self.title == DEFAULT_TITLE

    def find_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def with_message(self, message: Message) -> ConversationSession:
        """Return a copy with *message* upserted by id and ``last_updated`` bumped.

        An existing message with the same id is replaced in place; otherwise
        the message is appended.
        """
        messages = list(self.messages)
        for idx, existing in enumerate(messages):
            if existing.id == message.id:
                messages[idx] = message
                break
        else:
            messages.append(message)
        return self.model_copy(update={"messages": messages, "last_updated": utcnow()})

    def without_message(self, message_id: str) -> ConversationSession:
        messages = [m for m in self.messages if m.id != message_id]
        return self.model_copy(update={"messages": messages})

    def recent(self, count: int) -> list[Message]:
        """The last *count* messages, oldest first."""
        if count <= 0:
            return []
        return list(self.messages[-count:])


class Memory(BaseModel):
    """A durable fact or preference inferred about the user."""

    id: str = Field(default_factory=new_id)
    type: MemoryType
    content: str
    importance: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("importance", mode="before")
    @classmethod
    def _clamp(cls, value: object) -> float:
        return _clamp_importance(value)

    @property
    def intensity(self) -> int:
        """Number of indicator dots (0-3) shown next to the memory."""
        return max(0, math.ceil(_clamp_importance(self.importance) * 3))


# -- Model gateway result shapes ------------------------------------------------


class TopicDetectionResult(BaseModel):
    """Outcome of a topic-change analysis."""

    topic_changed: bool = False
    new_topic: str | None = None


class MemoryExtractionItem(BaseModel):
    """One memory candidate proposed by the extraction model."""

    type: MemoryType = MemoryType.CONTEXT
    content: str
    importance: float = 0.0

    @field_validator("importance", mode="before")
    @classmethod
    def _clamp(cls, value: object) -> float:
        return _clamp_importance(value)

    def to_memory(self) -> Memory:
        return Memory(type=self.type, content=self.content, importance=self.importance)
