"""
SQLAlchemy ORM models for session history.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Index
from database import Base


class SessionHistory(Base):
    """
    One row per live playback session per completed poll cycle.

    Rows are append-only. Retention trims by ``id`` (insertion order), never
    by ``timestamp``, so a skewed clock cannot evict fresh rows.
    """
    __tablename__ = "session_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    server_id = Column(String(64), nullable=False)
    server_name = Column(String(255), nullable=False)
    server_type = Column(String(20), nullable=False)  # "plex", "jellyfin", "emby", "generic"
    user = Column(String(255), nullable=False)
    title = Column(String(500), nullable=False)
    stream = Column(String(100), nullable=False, default="")  # e.g. "Transcode", "DirectPlay"
    transcoding = Column(Boolean, nullable=True)  # None when the backend didn't say
    location = Column(String(20), nullable=False, default="")  # "LAN", "WAN" or ""
    bandwidth = Column(Float, nullable=False, default=0.0)  # Mbps

    __table_args__ = (
        Index("idx_session_history_timestamp", timestamp.desc()),
        Index("idx_session_history_server", server_id),
        Index("idx_session_history_user", user),
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "time": self.timestamp.isoformat() + "Z" if self.timestamp else None,
            "serverId": self.server_id,
            "serverName": self.server_name,
            "type": self.server_type,
            "user": self.user,
            "title": self.title,
            "stream": self.stream,
            "transcoding": self.transcoding,
            "location": self.location,
            "bandwidth": self.bandwidth,
        }

    def __repr__(self):
        return f"<SessionHistory(id={self.id}, server={self.server_id}, user={self.user}, title={self.title})>"
