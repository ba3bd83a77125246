"""
Session history service: append one row per live session after each poll
cycle, trim to the retention cap, and query with simple filters.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DbSession

from config import get_settings
from database import get_session
from models import SessionHistory
from monitor_schema import BackendStatus, Session

logger = logging.getLogger(__name__)

SORT_FIELDS = ("time", "bandwidth")
SORT_ORDERS = ("asc", "desc")


def _first_text(*values: Optional[str], default: str) -> str:
    for value in values:
        if value:
            return value
    return default


def history_user(session: Session) -> str:
    return _first_text(session.user, session.user_name, default="Unknown")


def history_title(session: Session) -> str:
    return _first_text(session.title, session.episode, session.channel, default="Idle")


def build_row(status: BackendStatus, session: Session, timestamp: datetime) -> SessionHistory:
    return SessionHistory(
        timestamp=timestamp,
        server_id=status.id,
        server_name=status.name,
        server_type=status.kind,
        user=history_user(session),
        title=history_title(session),
        stream=session.stream or "",
        transcoding=session.transcoding if isinstance(session.transcoding, bool) else None,
        location=session.location or "",
        bandwidth=float(session.bandwidth or 0.0),
    )


class HistoryRecorder:
    """
    Append-only history store with a row-count retention cap.

    A non-positive cap disables trimming, letting history grow without bound.
    """

    def __init__(
        self,
        session_factory: Callable[[], DbSession] = get_session,
        retention: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self._retention = retention

    @property
    def retention(self) -> int:
        """Configured cap; read from settings unless fixed at construction."""
        if self._retention is not None:
            return self._retention
        return get_settings().history_retention

    def record_cycle(self, statuses: Iterable[BackendStatus], timestamp: Optional[datetime] = None) -> int:
        """
        Append rows for every online backend's sessions, then trim.

        Returns the number of rows appended. Database errors are logged and
        never raised: a failed append still lets the trim run, and a failed
        trim does not affect later appends.
        """
        timestamp = timestamp or datetime.utcnow()
        rows = [
            build_row(status, session, timestamp)
            for status in statuses
            if status.online and status.sessions
            for session in status.sessions
        ]

        appended = 0
        if rows:
            appended = self._append(rows)

        cap = self.retention
        if cap > 0:
            self.trim(cap)
        return appended

    def _append(self, rows: list[SessionHistory]) -> int:
        session = self._session_factory()
        try:
            session.add_all(rows)
            session.commit()
            logger.debug(f"Recorded {len(rows)} history rows")
            return len(rows)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to append {len(rows)} history rows: {e}")
            return 0
        finally:
            session.close()

    def trim(self, cap: int) -> int:
        """Delete the oldest rows (by insertion order) beyond ``cap``."""
        if cap <= 0:
            return 0

        session = self._session_factory()
        try:
            # id of the oldest row that survives
            boundary = (
                session.query(SessionHistory.id)
                .order_by(SessionHistory.id.desc())
                .offset(cap - 1)
                .limit(1)
                .scalar()
            )
            if boundary is None:
                return 0
            deleted = (
                session.query(SessionHistory)
                .filter(SessionHistory.id < boundary)
                .delete(synchronize_session=False)
            )
            session.commit()
            if deleted:
                logger.debug(f"Trimmed {deleted} history rows beyond retention cap {cap}")
            return deleted
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to trim history to {cap} rows: {e}")
            return 0
        finally:
            session.close()

    def effective_limit(self, limit: Optional[int]) -> Optional[int]:
        """The retention cap bounds every query unless a smaller limit is asked for."""
        cap = self.retention
        if limit is not None and limit > 0:
            if cap > 0:
                return min(limit, cap)
            return limit
        return cap if cap > 0 else None

    def query(
        self,
        server_id: Optional[str] = None,
        user: Optional[str] = None,
        search: Optional[str] = None,
        from_time: Optional[datetime] = None,
        to_time: Optional[datetime] = None,
        sort_by: str = "time",
        order: str = "desc",
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Query history rows.

        When sorting by time the limit always keeps the newest rows; ``order``
        only decides how they are presented.

        Raises:
            ValueError: unknown sort field or order
        """
        if sort_by not in SORT_FIELDS:
            raise ValueError(f"Unknown sort field '{sort_by}', expected one of {', '.join(SORT_FIELDS)}")
        if order not in SORT_ORDERS:
            raise ValueError(f"Unknown sort order '{order}', expected 'asc' or 'desc'")

        session = self._session_factory()
        try:
            query = session.query(SessionHistory)

            if server_id:
                query = query.filter(SessionHistory.server_id == server_id)
            if user:
                query = query.filter(func.lower(SessionHistory.user) == user.lower())
            if from_time:
                query = query.filter(SessionHistory.timestamp >= from_time)
            if to_time:
                query = query.filter(SessionHistory.timestamp <= to_time)
            if search:
                search_pattern = f"%{search}%"
                query = query.filter(
                    (SessionHistory.title.ilike(search_pattern)) |
                    (SessionHistory.user.ilike(search_pattern)) |
                    (SessionHistory.server_name.ilike(search_pattern)) |
                    (SessionHistory.stream.ilike(search_pattern))
                )

            if sort_by == "bandwidth":
                if order == "desc":
                    query = query.order_by(SessionHistory.bandwidth.desc(), SessionHistory.id.desc())
                else:
                    query = query.order_by(SessionHistory.bandwidth.asc(), SessionHistory.id.asc())
                reverse = False
            else:
                # Newest first, then flipped for ascending output
                query = query.order_by(SessionHistory.timestamp.desc(), SessionHistory.id.desc())
                reverse = order == "asc"

            effective = self.effective_limit(limit)
            if effective is not None:
                query = query.limit(effective)

            rows = query.all()
            if reverse:
                rows.reverse()
            return [row.to_dict() for row in rows]
        finally:
            session.close()

    def count(self) -> int:
        session = self._session_factory()
        try:
            return session.query(func.count(SessionHistory.id)).scalar() or 0
        finally:
            session.close()
