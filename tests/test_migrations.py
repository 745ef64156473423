from __future__ import annotations

import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from showya import database, storage
from showya.models import Base


def _patch_db(monkeypatch: pytest.MonkeyPatch, engine: Engine) -> None:
    monkeypatch.setattr(database, "engine", engine)


def _get_version(engine: Engine) -> str | None:
    with engine.connect() as conn:
        try:
            return conn.execute(
                text("select version_num from alembic_version")
            ).scalar()
        except OperationalError:
            return None


def test_upgrade_database_stamps_existing_db(monkeypatch, tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'existing.sqlite'}")
    Base.metadata.create_all(bind=engine)  # existing schema without Alembic tracking
    _patch_db(monkeypatch, engine)

    actions = storage.upgrade_database(make_backup=False)

    assert "Stamped existing database to Alembic head" in actions
    assert _get_version(engine) == "0002_email_otps"


def test_upgrade_database_creates_fresh_schema(monkeypatch, tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'fresh.sqlite'}")
    _patch_db(monkeypatch, engine)

    actions = storage.upgrade_database(make_backup=False)

    assert "Ran Alembic upgrade to head (fresh database)" in actions
    assert _get_version(engine) == "0002_email_otps"
    inspector = inspect(engine)
    for table in (
        "users",
        "communities",
        "events",
        "event_participants",
        "refunds",
        "razorpay_accounts",
        "promocodes",
        "notifications",
        "reports",
        "email_otps",
    ):
        assert inspector.has_table(table), table


def test_migration_matches_model_columns(monkeypatch, tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'columns.sqlite'}")
    _patch_db(monkeypatch, engine)

    storage.upgrade_database(make_backup=False)

    inspector = inspect(engine)
    for table in Base.metadata.sorted_tables:
        migrated = {column["name"] for column in inspector.get_columns(table.name)}
        assert migrated == set(table.columns.keys()), table.name


def test_upgrade_creates_backup(monkeypatch, tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'backup.sqlite'}")
    _patch_db(monkeypatch, engine)
    storage.upgrade_database(make_backup=False)

    actions = storage.upgrade_database(make_backup=True)

    assert (tmp_path / "backup.sqlite.bak").exists()
    assert "Applied Alembic migrations to head" in actions


def test_upgrade_handles_urls_that_need_escaping(monkeypatch, tmp_path):
    db_path = tmp_path / "my shows 100%.sqlite"
    engine = create_engine(URL.create("sqlite", database=str(db_path)))
    _patch_db(monkeypatch, engine)
    storage.upgrade_database(make_backup=False)

    actions = storage.upgrade_database(make_backup=True)

    assert actions == [
        f"Backup created at {db_path}.bak",
        "Applied Alembic migrations to head",
    ]
    assert _get_version(engine) == "0002_email_otps"


def test_upgrade_in_memory_database(monkeypatch):
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _patch_db(monkeypatch, engine)

    actions = storage.upgrade_database(make_backup=True)

    assert actions == ["Ran Alembic upgrade to head (fresh database)"]
    assert _get_version(engine) == "0002_email_otps"


def test_make_engine_picks_pool_for_the_backend():
    memory = database.make_engine("sqlite:///:memory:")
    assert isinstance(memory.pool, StaticPool)
    assert database.sqlite_file(memory) is None

    on_disk = database.make_engine("sqlite:////srv/showya/showya.db")
    assert not isinstance(on_disk.pool, StaticPool)
    assert database.sqlite_file(on_disk) == "/srv/showya/showya.db"


def test_resolve_url_prefers_configured_url(override_settings, tmp_path):
    override_settings(database_url="", database_path=tmp_path / "showya.db")
    assert database.resolve_url().database == str(tmp_path / "showya.db")

    override_settings(database_url="postgresql://showya:p%40ss@db/showya")
    url = database.resolve_url()
    assert url.get_backend_name() == "postgresql"
    assert url.password == "p@ss"
