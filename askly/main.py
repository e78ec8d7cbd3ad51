"""Askly entry point."""

import argparse
import asyncio
import logging
from pathlib import Path

from askly.chat.orchestrator import ConversationOrchestrator
from askly.chat.repository import ChatRepository
from askly.cli.app import ChatApp
from askly.config import settings
from askly.llm.client import AnthropicGateway
from askly.storage.kv import InMemoryStore, SQLiteStore

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def build_app(*, db_path: Path | None = None, ephemeral: bool = False) -> ChatApp:
    """Wire store, repository, gateway and orchestrator into a terminal app."""
    store = InMemoryStore() if ephemeral else SQLiteStore(db_path)
    repository = ChatRepository(store)
    orchestrator = ConversationOrchestrator(repository, AnthropicGateway())
    return ChatApp(orchestrator, repository)


def main() -> None:
    """Start an interactive Askly chat in the terminal."""
    parser = argparse.ArgumentParser(description="Askly, a chat assistant that remembers you.")
    parser.add_argument("--db", type=Path, default=None, help="SQLite database path")
    parser.add_argument(
        "--ephemeral", action="store_true", help="keep everything in memory for this run"
    )
    args = parser.parse_args()

    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY is not set; replies will fail")

    app = build_app(db_path=args.db, ephemeral=args.ephemeral)
    target = "in-memory store" if args.ephemeral else args.db or settings.database_path
    logger.info("Starting Askly (%s)...", target)
    asyncio.run(app.run())


if __name__ == "__main__":
    main()
