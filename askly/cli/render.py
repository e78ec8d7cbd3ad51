"""Plain-text rendering of sessions, messages and the memory panel."""

from collections.abc import Sequence

from askly.chat.models import ConversationSession, Memory, MemoryType, Message, Role

GENERATING_TITLE = "Generating Title..."

# Display order and headings of the memory panel
MEMORY_GROUPS: list[tuple[MemoryType, str]] = [
    (MemoryType.PERSONAL, "Personal Details"),
    (MemoryType.PREFERENCE, "Preferences"),
    (MemoryType.GOAL, "Goals"),
    (MemoryType.FACT, "Facts"),
    (MemoryType.CONTEXT, "Other Context"),
]


def importance_dots(memory: Memory) -> str:
    return "•" * memory.intensity


def group_memories(memories: Sequence[Memory]) -> list[tuple[str, list[Memory]]]:
    """Group memories by type in panel order, most important first. Empty groups are omitted."""
    groups = []
    for memory_type, label in MEMORY_GROUPS:
        members = sorted(
            (m for m in memories if m.type == memory_type),
            key=lambda m: m.importance,
            reverse=True,
        )
        if members:
            groups.append((label, members))
    return groups


def render_memories(memories: Sequence[Memory]) -> str:
    if not memories:
        return (
            "No memories yet.\n"
            "Chat with me and I'll start remembering your preferences and facts."
        )
    lines: list[str] = []
    for label, members in group_memories(memories):
        lines.append(label.upper())
        for memory in members:
            lines.append(f"  - {memory.content} {importance_dots(memory)}".rstrip())
        lines.append("")
    return "\n".join(lines).rstrip()


def session_label(session: ConversationSession) -> str:
    """Sidebar label: the title, or a placeholder while the title is being generated."""
    if session.has_default_title and len(session.messages) > 2:
        return GENERATING_TITLE
    return session.title


def render_session_list(
    sessions: Sequence[ConversationSession], active_id: str | None
) -> str:
    lines = []
    for idx, session in enumerate(sessions, start=1):
        marker = "*" if session.id == active_id else " "
        stamp = session.last_updated.astimezone().strftime("%Y-%m-%d")
        line = f"{marker} {idx}. {session_label(session)}  ({stamp})"
        if session.topic:
            line += f"  [{session.topic}]"
        lines.append(line)
    return "\n".join(lines)


def render_header(session: ConversationSession | None) -> str:
    if session is None:
        return "New Conversation"
    if session.topic:
        return f"{session.title}  ·  Topic: {session.topic}"
    return session.title


def speaker(message: Message) -> str:
    return "you" if message.role == Role.USER else "askly"


def render_message(message: Message) -> str:
    return f"{speaker(message)}> {message.content}"
