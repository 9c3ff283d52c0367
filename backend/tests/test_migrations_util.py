from __future__ import annotations

from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect, text

from backend.app.database import Base
from backend.app.migrations import REVISION_SENTINELS, run_database_migrations

BACKEND_DIR = Path(__file__).resolve().parents[1]


def _configure_alembic_script() -> ScriptDirectory:
    config = Config(str(BACKEND_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(BACKEND_DIR / "alembic"))
    return ScriptDirectory.from_config(config)


def _migrate(url: str, monkeypatch) -> None:
    monkeypatch.setenv("DATABASE_URL", url)
    try:
        run_database_migrations()
    finally:
        monkeypatch.delenv("DATABASE_URL", raising=False)


def _current_version(url: str) -> str:
    engine = create_engine(url, connect_args={"check_same_thread": False})
    try:
        with engine.connect() as connection:
            return connection.scalar(text("SELECT version_num FROM alembic_version"))
    finally:
        engine.dispose()


def test_latest_sentinel_matches_head_revision() -> None:
    assert REVISION_SENTINELS[0][0] == _configure_alembic_script().get_current_head()


def test_run_database_migrations_creates_schema_from_scratch(tmp_path, monkeypatch) -> None:
    url = f"sqlite:///{tmp_path / 'fresh.db'}"

    _migrate(url, monkeypatch)

    engine = create_engine(url, connect_args={"check_same_thread": False})
    inspector = inspect(engine)
    assert inspector.has_table("closing_sessions")
    assert inspector.has_table("closure_attempts")
    assert "closure_attempts_session_idx" in {
        index["name"] for index in inspector.get_indexes("closure_attempts")
    }
    engine.dispose()
    assert _current_version(url) == _configure_alembic_script().get_current_head()


def test_run_database_migrations_upgrades_existing_database(tmp_path, monkeypatch) -> None:
    url = f"sqlite:///{tmp_path / 'legacy.db'}"

    engine = create_engine(url, connect_args={"check_same_thread": False})
    with engine.begin() as connection:
        connection.execute(text("CREATE TABLE legacy_table (id INTEGER PRIMARY KEY)"))
    engine.dispose()

    _migrate(url, monkeypatch)

    engine = create_engine(url, connect_args={"check_same_thread": False})
    tables = inspect(engine).get_table_names()
    engine.dispose()

    assert "legacy_table" in tables
    assert "closing_sessions" in tables
    assert _current_version(url) == _configure_alembic_script().get_current_head()


def test_run_database_migrations_stamps_head_for_current_schema(tmp_path, monkeypatch) -> None:
    url = f"sqlite:///{tmp_path / 'current.db'}"

    engine = create_engine(url, connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    engine.dispose()

    _migrate(url, monkeypatch)

    assert _current_version(url) == _configure_alembic_script().get_current_head()
