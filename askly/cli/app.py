"""Interactive terminal chat on top of the conversation orchestrator."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TYPE_CHECKING, TextIO

from askly.chat.orchestrator import SendRejectedError, SessionNotFoundError
from askly.chat.repository import EventKind, RepositoryEvent
from askly.cli import render
from askly.llm.models import MODEL_MAP, ModelManager, ModelRole, friendly

if TYPE_CHECKING:
    from askly.chat.orchestrator import ConversationOrchestrator
    from askly.chat.repository import ChatRepository

logger = logging.getLogger(__name__)

HELP_TEXT = """\
Commands:
  /new            start a new conversation
  /sessions       list conversations
  /switch N       switch to conversation N
  /delete [N]     delete conversation N (default: the current one)
  /memories       show what Askly remembers about you
  /forget         forget all memories
  /reset          delete all conversations and memories
  /model [ROLE] NAME
                  show the models, or switch the chat (default)
                  or reasoning model
  /help           show this help
  /quit           exit"""


class StreamPrinter:
    """Echoes a streaming reply as the repository mirror changes.

    Only unpersisted updates of the watched session are printed; each one
    writes the text appended since the previous update.
    """

    def __init__(self, repository: ChatRepository, out: TextIO) -> None:
        self._repository = repository
        self._out = out
        self._session_id: str | None = None
        self._message_id: str | None = None
        self._printed = 0

    @property
    def streamed_id(self) -> str | None:
        """Id of the message echoed during the last watch, if any."""
        return self._message_id

    def watch(self, session_id: str) -> None:
        self._session_id = session_id
        self._message_id = None
        self._printed = 0

    def stop(self) -> None:
        self._session_id = None

    def __call__(self, event: RepositoryEvent) -> None:
        if (
            event.kind != EventKind.SESSION_UPDATED
            or event.persisted
            or event.session_id != self._session_id
        ):
            return
        session = self._repository.get_session(event.session_id)
        if session is None or not session.messages:
            return
        reply = session.messages[-1]
        if reply.id != self._message_id:
            self._message_id = reply.id
            self._printed = 0
            self._out.write(f"{render.speaker(reply)}> ")
        self._out.write(reply.content[self._printed :])
        self._out.flush()
        self._printed = len(reply.content)


class ChatApp:
    """Read-eval-print loop: plain lines are chat messages, ``/`` lines are commands."""

    def __init__(
        self,
        orchestrator: ConversationOrchestrator,
        repository: ChatRepository,
        out: TextIO | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._repository = repository
        self._out = out or sys.stdout
        self._printer = StreamPrinter(repository, self._out)
        self._unsubscribe = repository.subscribe(self._printer)

    def _print(self, text: str = "") -> None:
        self._out.write(f"{text}\n")
        self._out.flush()

    def _show_session(self) -> None:
        session = self._orchestrator.active_session
        self._print(f"== {render.render_header(session)} ==")
        if session:
            for message in session.messages:
                self._print(render.render_message(message))

    async def run(self) -> None:
        await self._orchestrator.start()
        self._show_session()
        try:
            while True:
                try:
                    line = await asyncio.to_thread(input, "\n> ")
                except EOFError:
                    break
                if not await self.handle_line(line):
                    break
        finally:
            self._unsubscribe()
            await self._orchestrator.wait_for_background()

    async def handle_line(self, line: str) -> bool:
        """Process one line of input. Returns False when the user asked to quit."""
        line = line.strip()
        if not line:
            return True
        if line.startswith("/"):
            return await self._handle_command(line)
        await self.send(line)
        return True

    async def send(self, text: str) -> None:
        session_id = self._orchestrator.active_session_id
        if session_id is None:
            session_id = (await self._orchestrator.create_session()).id
        self._printer.watch(session_id)
        try:
            reply = await self._orchestrator.send_message(session_id, text)
        except SendRejectedError:
            self._print("Still answering your previous message, hold on.")
            return
        finally:
            self._printer.stop()
        if self._printer.streamed_id is not None:
            self._print()
        # Nothing streamed, or the streamed text was replaced by the fallback
        if self._printer.streamed_id != reply.id:
            self._print(render.render_message(reply))

    async def _handle_command(self, line: str) -> bool:
        command, _, arg = line.partition(" ")
        arg = arg.strip()

        if command in ("/quit", "/exit"):
            return False
        if command == "/help":
            self._print(HELP_TEXT)
        elif command == "/new":
            await self._orchestrator.create_session()
            self._show_session()
        elif command == "/sessions":
            self._print(
                render.render_session_list(
                    self._orchestrator.sessions, self._orchestrator.active_session_id
                )
            )
        elif command == "/switch":
            session = self._session_by_index(arg)
            if session:
                self._orchestrator.select_session(session.id)
                self._show_session()
        elif command == "/delete":
            target = self._session_by_index(arg) if arg else self._orchestrator.active_session
            if target:
                try:
                    await self._orchestrator.delete_session(target.id)
                except SessionNotFoundError:
                    self._print("That conversation no longer exists.")
                else:
                    self._print(f"Deleted '{render.session_label(target)}'.")
                    self._show_session()
        elif command == "/memories":
            self._print(render.render_memories(self._orchestrator.memories))
        elif command == "/forget":
            count = await self._orchestrator.clear_memories()
            self._print(f"Forgot {count} memories.")
        elif command == "/reset":
            await self._orchestrator.clear_all()
            self._print("All conversations and memories deleted.")
            self._show_session()
        elif command == "/model":
            self._handle_model(arg)
        else:
            self._print(f"Unknown command {command}. Type /help for a list.")
        return True

    def _session_by_index(self, arg: str):  # noqa: ANN202
        sessions = self._orchestrator.sessions
        try:
            idx = int(arg)
        except ValueError:
            self._print("Give the conversation number shown by /sessions.")
            return None
        if not 1 <= idx <= len(sessions):
            self._print(f"No conversation {idx}. There are {len(sessions)}.")
            return None
        return sessions[idx - 1]

    def _handle_model(self, arg: str) -> None:
        """``/model`` shows both models; ``/model [chat|reasoning] NAME`` switches one."""
        mm = ModelManager.get()
        parts = arg.split()
        if not parts:
            for role in ModelRole:
                label = role.value.capitalize()
                self._print(f"{label} model: {friendly(mm.get_model(role))}")
            self._print(f"Options: {', '.join(MODEL_MAP)}")
            return

        role = ModelRole.CHAT
        if len(parts) == 2 and parts[0].lower() in set(ModelRole):
            role = ModelRole(parts[0].lower())
            parts = parts[1:]
        if len(parts) != 1:
            self._print("Usage: /model [chat|reasoning] NAME")
            return

        name = parts[0]
        if mm.set_model(role, name) is None:
            self._print(f"Unknown model '{name}'. Valid options: {', '.join(MODEL_MAP)}")
            return
        self._print(f"{role.value.capitalize()} model → {friendly(mm.get_model(role))}")
