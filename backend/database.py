"""
SQLite storage for session history.

A single engine serves the whole process. The poller appends from the event
loop thread while API handlers read, so file databases run in WAL mode to let
readers proceed during an append.
"""
import logging
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from config import CONFIG_DIR

logger = logging.getLogger(__name__)

HISTORY_DB_FILE = CONFIG_DIR / "history.db"

Base = declarative_base()

# Set by init_db() at startup
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def get_database_url() -> str:
    return f"sqlite:///{HISTORY_DB_FILE}"


def _is_memory_url(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:")


def _enable_wal(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
    finally:
        cursor.close()


def init_db(database_url: Optional[str] = None) -> Engine:
    """
    Create the engine and the session_history table.

    Called once from the app lifespan. Passing a URL (for example
    ``sqlite://``) overrides the default file under CONFIG_DIR.
    """
    global _engine, _SessionLocal

    if database_url is None:
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        database_url = get_database_url()
    logger.info(f"Opening history database at {database_url}")

    try:
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        if not _is_memory_url(database_url):
            event.listen(engine, "connect", _enable_wal)

        from models import SessionHistory  # noqa: F401 - registers the table

        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.exception(f"Failed to initialize history database: {e}")
        raise

    _engine = engine
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return engine


def close_db() -> None:
    """Dispose of the engine. get_session() fails until init_db() runs again."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
        logger.info("History database closed")
    _engine = None
    _SessionLocal = None


def get_session():
    """New ORM session; the caller closes it."""
    if _SessionLocal is None:
        logger.error("History database used before init_db()")
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _SessionLocal()


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine
