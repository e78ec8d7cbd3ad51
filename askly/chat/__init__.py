"""Chat sessions, memories, and the send pipeline that ties them together."""

from askly.chat.models import ConversationSession, Memory, MemoryType, Message, Role
from askly.chat.orchestrator import (
    ConversationOrchestrator,
    SendRejectedError,
    SendState,
    SessionNotFoundError,
)
from askly.chat.repository import ChatRepository, EventKind, RepositoryEvent

__all__ = [
    "ChatRepository",
    "ConversationOrchestrator",
    "ConversationSession",
    "EventKind",
    "Memory",
    "MemoryType",
    "Message",
    "RepositoryEvent",
    "Role",
    "SendRejectedError",
    "SendState",
    "SessionNotFoundError",
]
