"""Database connection management for the tmz cache.

The cache is a single SQLite file shared by foreground commands and the
background daemon. WAL journaling gives concurrent readers and one
serialized writer; busy_timeout makes a second writer wait instead of
failing immediately.

Usage:
    from tmz.db.connection import create_cache_engine, init_db, session_scope

    engine = create_cache_engine(paths.cache_db)
    init_db(engine)
    factory = make_session_factory(engine)
    with session_scope(factory) as db:
        db.get(Conversation, conversation_id)
"""

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from tmz.db.models import Base
from tmz.errors import CacheError

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 5000


def get_database_url(db_path: Path | str) -> str:
    """Build a SQLite URL for a file path, or pass through ':memory:'."""
    db_path = str(db_path)
    if db_path.startswith("sqlite:"):
        return db_path
    if db_path == ":memory:":
        return "sqlite://"
    return f"sqlite:///{db_path}"


def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    """Configure SQLite pragmas for concurrent access.

    - journal_mode=WAL: concurrent readers plus a single writer.
    - synchronous=NORMAL: durable after WAL fsync.
    - busy_timeout: wait for the writer lock instead of raising.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA synchronous=NORMAL;")
    cursor.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS};")
    cursor.close()


def create_cache_engine(db_path: Path | str) -> Engine:
    """Create an engine for the cache database.

    Args:
        db_path: SQLite file path, ':memory:', or a full sqlite URL.

    Returns:
        Engine with the connect-time pragmas installed.
    """
    url = get_database_url(db_path)
    if url != "sqlite://":
        Path(str(db_path)).expanduser().parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        url,
        connect_args={"check_same_thread": False},
        echo=os.environ.get("SQL_ECHO", "").lower() == "true",
    )
    event.listen(engine, "connect", _set_sqlite_pragma)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to the cache engine."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Context manager that commits on success and rolls back on error.

    Usage:
        with session_scope(factory) as db:
            db.execute(stmt)
    """
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# Full-text index over message body, sender and conversation id. It is an
# external-content table keyed by messages.rowid and kept in step by triggers.
_FTS_DDL = [
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS messages_fts USING fts5(
        body_plain,
        sender_display_name,
        conversation_id,
        content='messages',
        content_rowid='rowid'
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS messages_fts_ai AFTER INSERT ON messages BEGIN
        INSERT INTO messages_fts(rowid, body_plain, sender_display_name, conversation_id)
        VALUES (new.rowid, new.body_plain, new.sender_display_name, new.conversation_id);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS messages_fts_ad AFTER DELETE ON messages BEGIN
        INSERT INTO messages_fts(messages_fts, rowid, body_plain, sender_display_name, conversation_id)
        VALUES ('delete', old.rowid, old.body_plain, old.sender_display_name, old.conversation_id);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS messages_fts_au AFTER UPDATE ON messages BEGIN
        INSERT INTO messages_fts(messages_fts, rowid, body_plain, sender_display_name, conversation_id)
        VALUES ('delete', old.rowid, old.body_plain, old.sender_display_name, old.conversation_id);
        INSERT INTO messages_fts(rowid, body_plain, sender_display_name, conversation_id)
        VALUES (new.rowid, new.body_plain, new.sender_display_name, new.conversation_id);
    END
    """,
]


def _migrate_fts(conn: Any) -> None:
    """Create the full-text table and its sync triggers.

    Idempotent. A database created before the index existed gets a
    one-time rebuild from the messages table.
    """
    existed = conn.execute(
        text("SELECT 1 FROM sqlite_master WHERE type='table' AND name='messages_fts'")
    ).first()
    for ddl in _FTS_DDL:
        conn.execute(text(ddl))
    if existed is None:
        conn.execute(text("INSERT INTO messages_fts(messages_fts) VALUES ('rebuild')"))


def init_db(engine: Engine) -> None:
    """Create tables, indexes and the full-text index.

    Safe to call on every startup.

    Raises:
        CacheError: If the schema cannot be created.
    """
    try:
        Base.metadata.create_all(bind=engine)
        with engine.begin() as conn:
            _migrate_fts(conn)
    except SQLAlchemyError as e:
        raise CacheError(f"cannot initialize cache database: {e}") from e
    logger.debug("Cache schema ready at %s", engine.url)
