"""
Unit tests for the database module.
"""
import pytest
from sqlalchemy import inspect

import database
from database import close_db, get_engine, get_session, init_db


@pytest.fixture
def memory_db():
    init_db("sqlite://")
    yield
    close_db()


class TestDatabase:
    def test_session_before_init_raises(self):
        close_db()
        with pytest.raises(RuntimeError):
            get_session()

    def test_init_creates_history_table(self, memory_db):
        assert "session_history" in inspect(get_engine()).get_table_names()

    def test_session_after_init(self, memory_db):
        session = get_session()
        try:
            assert session.bind is get_engine()
        finally:
            session.close()

    def test_close_resets_state(self, memory_db):
        close_db()
        assert database._engine is None
        with pytest.raises(RuntimeError):
            get_engine()

    def test_file_database_uses_wal(self, tmp_path):
        init_db(f"sqlite:///{tmp_path / 'history.db'}")
        try:
            with get_engine().connect() as conn:
                mode = conn.exec_driver_sql("PRAGMA journal_mode").scalar()
            assert mode.lower() == "wal"
        finally:
            close_db()
