from pathlib import Path

import pytest

import cli
from assess.database import build_engine, build_session_factory, init_db

SAMPLE = Path(__file__).resolve().parents[1] / "samples" / "assessment.json"


@pytest.fixture
def cli_db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    engine = build_engine(f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setattr(cli, "SessionLocal", build_session_factory(engine))
    monkeypatch.setattr(cli, "init_db", lambda: init_db(engine))
    yield
    engine.dispose()


def test_seed_and_summary(cli_db) -> None:
    assert cli.seed(SAMPLE) == "weekly-1"
    # Seeding again replaces the definition in place
    assert cli.seed(SAMPLE) == "weekly-1"

    totals = cli.summary("weekly-1", "nobody")
    assert totals["max_score"] == 33
    assert totals["total_score"] == 0
    assert totals["percent"] == 0.0
