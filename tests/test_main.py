"""Tests for application wiring."""

from askly.cli.app import ChatApp
from askly.main import build_app


async def test_build_app_ephemeral_starts_fresh_session() -> None:
    app = build_app(ephemeral=True)
    assert isinstance(app, ChatApp)

    orchestrator = app._orchestrator
    session = await orchestrator.start()
    assert orchestrator.active_session_id == session.id
    assert len(orchestrator.sessions) == 1


async def test_build_app_sqlite_persists(tmp_path) -> None:
    db_path = tmp_path / "askly.db"
    first = build_app(db_path=db_path)
    session = await first._orchestrator.start()

    second = build_app(db_path=db_path)
    resumed = await second._orchestrator.start()

    assert resumed.id == session.id
    assert db_path.exists()
