"""Tests for terminal rendering helpers."""

from datetime import timedelta

from askly.chat.models import DEFAULT_TITLE, ConversationSession, Memory, MemoryType, Message, Role
from askly.cli.render import (
    GENERATING_TITLE,
    group_memories,
    importance_dots,
    render_header,
    render_memories,
    render_message,
    render_session_list,
    session_label,
)


def _memory(kind: MemoryType, content: str, importance: float) -> Memory:
    return Memory(type=kind, content=content, importance=importance)


def _session_with(count: int, title: str = DEFAULT_TITLE) -> ConversationSession:
    session = ConversationSession.create().model_copy(update={"title": title})
    for i in range(count - 1):
        session = session.with_message(Message(role=Role.USER, content=f"m{i}"))
    return session


def test_importance_dots() -> None:
    assert importance_dots(_memory(MemoryType.FACT, "x", 0.0)) == ""
    assert importance_dots(_memory(MemoryType.FACT, "x", 0.2)) == "•"
    assert importance_dots(_memory(MemoryType.FACT, "x", 0.5)) == "••"
    assert importance_dots(_memory(MemoryType.FACT, "x", 1.0)) == "•••"


def test_group_memories_order_and_sorting() -> None:
    memories = [
        _memory(MemoryType.FACT, "Lives in Oslo", 0.4),
        _memory(MemoryType.PREFERENCE, "Likes tea", 0.3),
        _memory(MemoryType.PREFERENCE, "Enjoys hiking", 0.8),
        _memory(MemoryType.PERSONAL, "Name is Sam", 0.9),
    ]
    groups = group_memories(memories)

    assert [label for label, _ in groups] == ["Personal Details", "Preferences", "Facts"]
    assert [m.content for m in groups[1][1]] == ["Enjoys hiking", "Likes tea"]


def test_render_memories_empty() -> None:
    assert render_memories([]).startswith("No memories yet.")


def test_render_memories() -> None:
    text = render_memories([_memory(MemoryType.GOAL, "Run a marathon", 0.7)])
    assert text == "GOALS\n  - Run a marathon •••"


def test_session_label_placeholder_while_untitled() -> None:
    assert session_label(_session_with(2)) == DEFAULT_TITLE
    assert session_label(_session_with(3)) == GENERATING_TITLE
    assert session_label(_session_with(3, title="Hiking Trip")) == "Hiking Trip"


def test_render_session_list_marks_active() -> None:
    first = _session_with(1, title="Alpha").model_copy(update={"topic": "Travel"})
    second = _session_with(1, title="Beta")
    second = second.model_copy(update={"last_updated": first.last_updated - timedelta(days=1)})

    lines = render_session_list([first, second], second.id).splitlines()

    assert lines[0].startswith("  1. Alpha")
    assert lines[0].endswith("[Travel]")
    assert lines[1].startswith("* 2. Beta")


def test_render_header() -> None:
    session = _session_with(1, title="Alpha")
    assert render_header(None) == DEFAULT_TITLE
    assert render_header(session) == "Alpha"
    assert render_header(session.model_copy(update={"topic": "Travel"})) == "Alpha  ·  Topic: Travel"


def test_render_message() -> None:
    assert render_message(Message(role=Role.USER, content="hi")) == "you> hi"
    assert render_message(Message(role=Role.MODEL, content="hello")) == "askly> hello"
