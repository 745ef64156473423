"""Schema migrations and the root admin token."""

from __future__ import annotations

import logging
import secrets
import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect
from sqlalchemy.engine import Connection

from . import database
from .config import settings
from .database import get_session
from .models import Meta
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

ALEMBIC_DIR = Path(__file__).resolve().parent / "alembic"


def init_db() -> None:
    upgrade_database(make_backup=False)
    ensure_root_token()


def _alembic_config(connection: Connection) -> Config:
    """Alembic config that migrates over ``connection`` instead of a URL."""
    config = Config()
    config.set_main_option("script_location", str(ALEMBIC_DIR))
    # ConfigParser treats "%" as interpolation; escaped URLs must survive it.
    url = connection.engine.url.render_as_string(hide_password=False)
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    config.attributes["connection"] = connection
    return config


def backup_database() -> Path | None:
    """Copy the SQLite file next to itself; other backends are left alone."""
    db_file = database.sqlite_file(database.engine)
    if not db_file or not Path(db_file).exists():
        return None
    backup_path = Path(f"{db_file}.bak")
    shutil.copy(db_file, backup_path)
    return backup_path


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Bring the schema to the newest Alembic revision.

    A fresh database is migrated, one created by ``metadata.create_all`` is
    stamped, and a tracked one is upgraded. Returns the actions taken.
    """
    actions: list[str] = []
    if make_backup:
        backup_path = backup_database()
        if backup_path:
            actions.append(f"Backup created at {backup_path}")

    with database.engine.begin() as connection:
        inspector = inspect(connection)
        tracked = inspector.has_table("alembic_version")
        has_events = inspector.has_table("events")
        config = _alembic_config(connection)
        if tracked:
            command.upgrade(config, "head")
            actions.append("Applied Alembic migrations to head")
        elif has_events:
            command.stamp(config, "head")
            actions.append("Stamped existing database to Alembic head")
        else:
            command.upgrade(config, "head")
            actions.append("Ran Alembic upgrade to head (fresh database)")

    for action in actions:
        logger.info(action)
    return actions


def _store_root_token(session, token: str) -> str:
    session.merge(Meta(key=settings.root_token_key, value=token, updated_at=utcnow()))
    return token


def ensure_root_token() -> str:
    with get_session() as session:
        existing = session.get(Meta, settings.root_token_key)
        if existing:
            return existing.value
        return _store_root_token(session, secrets.token_urlsafe(32))


def rotate_root_token() -> str:
    with get_session() as session:
        token = _store_root_token(session, secrets.token_urlsafe(32))
    logger.info("Root admin token rotated")
    return token


def fetch_root_token() -> str:
    with get_session() as session:
        meta = session.get(Meta, settings.root_token_key)
    return meta.value if meta else ensure_root_token()
