"""
Pytest configuration and shared fixtures for backend tests.
"""
import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Set test config directory before importing modules
os.environ["CONFIG_DIR"] = "/tmp/omnistream_test_config"

# Ensure test config directory exists
Path("/tmp/omnistream_test_config").mkdir(parents=True, exist_ok=True)

from database import Base
from models import SessionHistory  # noqa: F401 - registers table


@pytest.fixture(scope="function")
def test_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    """
    Session factory bound to the test engine.

    expire_on_commit=False allows accessing object attributes after the
    production code commits and closes the session.
    """
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine, expire_on_commit=False)


@pytest.fixture(scope="function")
def test_session(session_factory):
    """Create a test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def fresh_settings():
    """Every test starts from default settings."""
    from config import MonitorSettings
    import config

    config._cached_settings = MonitorSettings()
    yield
    config._cached_settings = None


@pytest.fixture
def servers_file(tmp_path):
    """Empty servers.json in a temporary directory."""
    path = tmp_path / "servers.json"
    path.write_text("[]")
    return path


@pytest.fixture
def test_poller(servers_file, session_factory):
    """
    A fully wired MediaPoller that never touches the network or the real
    config directory. Tests set ``poller._transport`` to an httpx.MockTransport.
    """
    from alert_methods import ChannelDispatcher
    from history_recorder import HistoryRecorder
    from media_poller import MediaPoller
    from notification_engine import NotificationEngine
    from server_registry import BackendRegistry
    from status_store import StatusRepository

    return MediaPoller(
        registry=BackendRegistry(servers_file),
        statuses=StatusRepository(),
        recorder=HistoryRecorder(session_factory=session_factory, retention=500),
        notifier=NotificationEngine(ChannelDispatcher()),
        poll_interval=15,
        fetch_timeout=2.0,
    )


@pytest.fixture(scope="function")
async def async_client(test_poller):
    """
    Create an async test client for the FastAPI app.

    The global poller is replaced by ``test_poller``; the app lifespan is not
    run, so no background polling happens during API tests.
    """
    from httpx import AsyncClient, ASGITransport
    import media_poller
    from main import app

    original_poller = media_poller._poller
    media_poller._poller = test_poller

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        media_poller._poller = original_poller
