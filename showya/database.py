"""Engine and session management.

The engine points at ``settings.database_url`` when one is configured and at
the SQLite file under ``settings.database_path`` otherwise. :func:`configure`
rebinds the engine and the shared session factory, so the CLI and the payment
sync job can work against another database.
"""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings

IN_MEMORY = (None, "", ":memory:")


def resolve_url() -> URL:
    if settings.database_url:
        return make_url(settings.database_url)
    return URL.create("sqlite", database=str(settings.database_path))


def is_sqlite(url: URL) -> bool:
    return url.get_backend_name() == "sqlite"


def make_engine(url: str | URL) -> Engine:
    url = make_url(url)
    options: dict = {}
    if is_sqlite(url):
        options["connect_args"] = {"check_same_thread": False}
        if url.database in IN_MEMORY:
            # Every connection has to see the same in-memory database.
            options["poolclass"] = StaticPool
    else:
        options["pool_pre_ping"] = True
    return create_engine(url, **options)


engine = make_engine(resolve_url())
SessionLocal = scoped_session(
    sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
)


def configure(url: str | URL) -> Engine:
    """Point Showya at another database and return the new engine."""
    global engine
    SessionLocal.remove()
    previous, engine = engine, make_engine(url)
    SessionLocal.configure(bind=engine)
    previous.dispose()
    return engine


def sqlite_file(bind: Engine) -> str | None:
    """Return the database file behind a SQLite engine, if there is one."""
    if not is_sqlite(bind.url) or bind.url.database in IN_MEMORY:
        return None
    return bind.url.database


@contextmanager
def get_session():
    """Context manager returning a SQLAlchemy session."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
