"""
Unit tests for the history_recorder module.
"""
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from history_recorder import HistoryRecorder, build_row, history_title, history_user
from models import SessionHistory
from tests.fixtures.factories import create_session, create_status


def _record(recorder, sessions, server_id="srv1", timestamp=None):
    status = create_status(id=server_id, sessions=sessions)
    return recorder.record_cycle([status], timestamp=timestamp or datetime.utcnow())


class TestRowBuilding:
    """Tests for the row-level fallbacks."""

    def test_user_falls_back_to_user_name(self):
        assert history_user(create_session(user="", user_name="bob")) == "bob"
        assert history_user(create_session(user="", user_name="")) == "Unknown"

    def test_title_fallback_chain(self):
        """Title, then episode, then live channel, then Idle."""
        assert history_title(create_session(title="Movie")) == "Movie"
        assert history_title(create_session(title="", episode="Pilot")) == "Pilot"
        assert history_title(create_session(title="", channel="BBC One")) == "BBC One"
        assert history_title(create_session(title="")) == "Idle"

    def test_build_row_copies_backend_identity(self):
        status = create_status(id="srv9", name="Den", kind="jellyfin")
        row = build_row(status, create_session(bandwidth=3.5, location="WAN"), datetime(2024, 1, 1))
        assert row.server_id == "srv9"
        assert row.server_name == "Den"
        assert row.server_type == "jellyfin"
        assert row.location == "WAN"
        assert row.bandwidth == 3.5


class TestRecordCycle:
    """Tests for appending rows after a poll cycle."""

    def test_appends_one_row_per_session(self, session_factory, test_session):
        recorder = HistoryRecorder(session_factory=session_factory, retention=100)
        appended = _record(recorder, [create_session(user="a"), create_session(user="b")])

        assert appended == 2
        assert test_session.query(SessionHistory).count() == 2

    def test_offline_backends_are_skipped(self, session_factory, test_session):
        recorder = HistoryRecorder(session_factory=session_factory, retention=100)
        offline = create_status(id="down", online=False, sessions=[create_session()])

        assert recorder.record_cycle([offline]) == 0
        assert test_session.query(SessionHistory).count() == 0

    def test_no_sessions_appends_nothing(self, session_factory):
        recorder = HistoryRecorder(session_factory=session_factory, retention=100)
        assert _record(recorder, []) == 0
        assert recorder.count() == 0

    def test_retention_keeps_newest_rows(self, session_factory):
        """After 5 single-row cycles with a cap of 3, the last 3 rows remain."""
        recorder = HistoryRecorder(session_factory=session_factory, retention=3)
        base = datetime(2024, 1, 1)
        for i in range(5):
            _record(recorder, [create_session(title=f"t{i}")], timestamp=base + timedelta(minutes=i))

        rows = recorder.query(order="asc")
        assert [r["title"] for r in rows] == ["t2", "t3", "t4"]
        assert recorder.count() == 3

    def test_trim_uses_insertion_order(self, session_factory):
        """A row with an older timestamp but newer id survives trimming."""
        recorder = HistoryRecorder(session_factory=session_factory, retention=2)
        _record(recorder, [create_session(title="first")], timestamp=datetime(2024, 1, 2))
        _record(recorder, [create_session(title="second")], timestamp=datetime(2024, 1, 3))
        _record(recorder, [create_session(title="skewed")], timestamp=datetime(2020, 1, 1))

        titles = {r["title"] for r in recorder.query()}
        assert titles == {"second", "skewed"}

    def test_non_positive_cap_disables_trimming(self, session_factory):
        recorder = HistoryRecorder(session_factory=session_factory, retention=0)
        for _ in range(4):
            _record(recorder, [create_session()])
        assert recorder.count() == 4

    def test_retention_defaults_to_settings(self, session_factory):
        import config

        config._cached_settings.history_retention = 7
        recorder = HistoryRecorder(session_factory=session_factory)
        assert recorder.retention == 7

    def test_append_failure_is_logged_not_raised(self):
        """A database error during append is swallowed and rolled back."""
        db = MagicMock()
        db.commit.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
        recorder = HistoryRecorder(session_factory=lambda: db, retention=0)

        assert _record(recorder, [create_session()]) == 0
        db.rollback.assert_called_once()
        db.close.assert_called_once()


class TestQuery:
    """Tests for history queries."""

    @pytest.fixture
    def recorder(self, session_factory):
        recorder = HistoryRecorder(session_factory=session_factory, retention=100)
        base = datetime(2024, 6, 1, 12, 0)
        _record(recorder, [create_session(user="Alice", title="Dune", bandwidth=20.0)], "srv1", base)
        _record(recorder, [create_session(user="bob", title="Alien", bandwidth=5.0, stream="Transcode")],
                "srv2", base + timedelta(hours=1))
        _record(recorder, [create_session(user="alice", title="Heat", bandwidth=12.0)], "srv1",
                base + timedelta(hours=2))
        return recorder

    def test_default_is_newest_first(self, recorder):
        assert [r["title"] for r in recorder.query()] == ["Heat", "Alien", "Dune"]

    def test_ascending_time(self, recorder):
        assert [r["title"] for r in recorder.query(order="asc")] == ["Dune", "Alien", "Heat"]

    def test_limit_keeps_newest_even_ascending(self, recorder):
        """A time-sorted limit always returns the newest rows."""
        assert [r["title"] for r in recorder.query(order="asc", limit=2)] == ["Alien", "Heat"]

    def test_sort_by_bandwidth(self, recorder):
        assert [r["title"] for r in recorder.query(sort_by="bandwidth")] == ["Dune", "Heat", "Alien"]
        assert [r["title"] for r in recorder.query(sort_by="bandwidth", order="asc")] == ["Alien", "Heat", "Dune"]

    def test_filter_by_server(self, recorder):
        assert {r["title"] for r in recorder.query(server_id="srv1")} == {"Dune", "Heat"}

    def test_user_filter_is_case_insensitive(self, recorder):
        assert {r["title"] for r in recorder.query(user="ALICE")} == {"Dune", "Heat"}

    def test_search_matches_stream(self, recorder):
        assert [r["title"] for r in recorder.query(search="transcode")] == ["Alien"]

    def test_time_range(self, recorder):
        rows = recorder.query(
            from_time=datetime(2024, 6, 1, 12, 30),
            to_time=datetime(2024, 6, 1, 13, 30),
        )
        assert [r["title"] for r in rows] == ["Alien"]

    def test_limit_is_bounded_by_retention(self, session_factory):
        recorder = HistoryRecorder(session_factory=session_factory, retention=2)
        assert recorder.effective_limit(10) == 2
        assert recorder.effective_limit(1) == 1
        assert recorder.effective_limit(None) == 2

    def test_unbounded_retention_limit(self, session_factory):
        recorder = HistoryRecorder(session_factory=session_factory, retention=0)
        assert recorder.effective_limit(None) is None
        assert recorder.effective_limit(5) == 5

    def test_unknown_sort_field_raises(self, recorder):
        with pytest.raises(ValueError):
            recorder.query(sort_by="user")

    def test_unknown_order_raises(self, recorder):
        with pytest.raises(ValueError):
            recorder.query(order="sideways")

    def test_row_shape(self, recorder):
        row = recorder.query(limit=1)[0]
        assert row["serverId"] == "srv1"
        assert row["time"].endswith("Z")
        assert set(row) >= {"user", "title", "stream", "transcoding", "location", "bandwidth", "type"}
