from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import get_settings


Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _ensure_parent_directory(db_url: str) -> None:
    if db_url.startswith("sqlite:///"):
        # sqlite:////abs/path.db
        file_path = db_url.split("sqlite:///")[-1]
        if file_path and file_path != ":memory:":
            parent = Path(file_path).parent
            parent.mkdir(parents=True, exist_ok=True)


def get_engine():
    settings = get_settings()
    db_url = settings.resolved_database_url()
    if not db_url.startswith("sqlite"):
        return create_engine(db_url, pool_pre_ping=True)
    _ensure_parent_directory(db_url)
    if db_url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every session sees an empty database
        return create_engine(db_url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(db_url, connect_args={"check_same_thread": False})


engine = get_engine()


# Enable WAL, reasonable sync and FK enforcement on each new sqlite connection
@event.listens_for(engine, "connect")
def _set_sqlite_pragmas(dbapi_connection, connection_record):  # type: ignore[no-redef]
    if engine.dialect.name != "sqlite":
        return
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
    finally:
        cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """Session factory for work that outlives the request scope (streamed bodies)."""
    return SessionLocal
