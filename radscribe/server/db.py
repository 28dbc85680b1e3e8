"""SQLAlchemy database setup: SQLite by default, any SQLAlchemy URL works."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def db_url_for_output_dir(output_dir: Path) -> str:
    """SQLite URL for ``<output_dir>/.radscribe/radscribe.db``, next to the log file."""
    db_path = output_dir / ".radscribe" / "radscribe.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{db_path}"


def get_engine(db_url: str) -> Engine:
    """Create a SQLAlchemy engine.

    Pass ``"sqlite://"`` for an in-memory database (tests).
    """
    if db_url == "sqlite://":
        # One shared connection, otherwise each connection gets its own empty DB
        return create_engine(
            db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if db_url.startswith("sqlite"):
        return create_engine(db_url, connect_args={"check_same_thread": False})
    return create_engine(db_url)


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
    """Enable WAL mode and foreign keys for SQLite connections."""
    if not type(dbapi_connection).__module__.startswith("sqlite3"):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables. Safe to call repeatedly (CREATE IF NOT EXISTS)."""
    from radscribe.server import models  # noqa: F401 registers all tables

    Base.metadata.create_all(bind=engine)
