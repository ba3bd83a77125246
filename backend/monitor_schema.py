"""
Monitor Data Model

Canonical shapes shared by the normalizer, poller, history recorder and
notification engine. Vendor payloads never leave the normalizer; everything
downstream works on these dataclasses.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


# =============================================================================
# Enumerations
# =============================================================================

class VendorKind(str, Enum):
    """Backend vendor kinds a descriptor can declare."""
    PLEX = "plex"
    JELLYFIN = "jellyfin"
    EMBY = "emby"
    GENERIC = "generic"


class Severity(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class AlertKind(str, Enum):
    """Alert kinds and the identifier prefix each one produces."""
    OFFLINE = "offline"
    WAN_TRANSCODE = "wanTranscode"
    ANY_WAN = "anyWan"
    HIGH_BANDWIDTH = "highBandwidth"
    HIGH_WAN_BANDWIDTH = "highWanBandwidth"

    @property
    def id_prefix(self) -> str:
        return {
            AlertKind.OFFLINE: "offline",
            AlertKind.WAN_TRANSCODE: "wan-transcode",
            AlertKind.ANY_WAN: "any-wan",
            AlertKind.HIGH_BANDWIDTH: "high-bandwidth",
            AlertKind.HIGH_WAN_BANDWIDTH: "high-wan-bandwidth",
        }[self]


# =============================================================================
# Backend descriptor (read-only input)
# =============================================================================

@dataclass(frozen=True)
class BackendDescriptor:
    """A configured media server as handed to the poller."""
    id: str
    name: str
    kind: str = VendorKind.GENERIC.value
    base_url: str = ""
    token: Optional[str] = None
    token_location: Optional[str] = None  # "header" or "query"; None = vendor default
    api_path: Optional[str] = None
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "BackendDescriptor":
        """Build from a servers.json entry (camelCase keys, as stored)."""
        base_url = data.get("baseUrl") or data.get("base_url") or ""
        kind = (data.get("type") or data.get("kind") or VendorKind.GENERIC.value).lower()
        return cls(
            id=str(data.get("id") or base_url),
            name=data.get("name") or base_url,
            kind=kind,
            base_url=base_url,
            token=data.get("token") or None,
            token_location=data.get("tokenLocation") or data.get("token_location") or None,
            api_path=data.get("apiPath") or data.get("api_path") or None,
            enabled=not data.get("disabled", False),
        )

    def to_dict(self) -> dict:
        """Public view of the descriptor. The token is never included."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.kind,
            "baseUrl": self.base_url,
            "apiPath": self.api_path,
            "tokenLocation": self.token_location,
            "hasToken": bool(self.token),
            "disabled": not self.enabled,
        }


# =============================================================================
# Sessions and summaries
# =============================================================================

@dataclass
class Session:
    """One active playback, normalized from any vendor shape."""
    user: str = "Unknown"
    title: str = "Unknown"
    episode: Optional[str] = None
    year: Optional[int] = None
    platform: str = ""
    state: str = ""
    poster: Optional[str] = None
    duration: int = 0  # seconds
    view_offset: int = 0  # seconds
    progress: int = 0  # percent, 0-100
    product: str = ""
    player: str = ""
    quality: str = ""
    stream: str = ""
    container: str = ""
    video: str = ""
    audio: str = ""
    subtitle: str = "None"
    location: str = ""  # "LAN", "WAN" or "" (unknown)
    ip: str = ""
    bandwidth: float = 0.0  # Mbps
    transcoding: Optional[bool] = None
    season: Optional[int] = None
    episode_number: Optional[int] = None
    live: bool = False
    channel: str = ""
    episode_title: str = ""
    user_name: str = ""

    def to_dict(self) -> dict:
        return {
            "user": self.user,
            "title": self.title,
            "episode": self.episode,
            "year": self.year,
            "platform": self.platform,
            "state": self.state,
            "poster": self.poster,
            "duration": self.duration,
            "viewOffset": self.view_offset,
            "progress": self.progress,
            "product": self.product,
            "player": self.player,
            "quality": self.quality,
            "stream": self.stream,
            "container": self.container,
            "video": self.video,
            "audio": self.audio,
            "subtitle": self.subtitle,
            "location": self.location,
            "ip": self.ip,
            "bandwidth": self.bandwidth,
            "transcoding": self.transcoding,
            "season": self.season,
            "episodeNumber": self.episode_number,
            "live": self.live,
            "channel": self.channel,
            "episodeTitle": self.episode_title,
            "userName": self.user_name,
        }


@dataclass
class BackendSummary:
    direct_plays: int = 0
    transcodes: int = 0
    total_bandwidth: float = 0.0
    lan_bandwidth: float = 0.0
    wan_bandwidth: float = 0.0

    def to_dict(self) -> dict:
        return {
            "directPlays": self.direct_plays,
            "transcodes": self.transcodes,
            "totalStreams": self.direct_plays + self.transcodes,
            "totalBandwidth": round(self.total_bandwidth, 3),
            "lanBandwidth": round(self.lan_bandwidth, 3),
            "wanBandwidth": round(self.wan_bandwidth, 3),
        }


@dataclass
class NormalizedPayload:
    """Result of normalizing one vendor payload."""
    vendor_kind: str
    sessions: list[Session] = field(default_factory=list)
    summary: BackendSummary = field(default_factory=BackendSummary)


@dataclass
class BackendStatus:
    """
    Latest poll outcome for one backend.

    Built in full by the poller and published with a single assignment; never
    mutated afterwards.
    """
    id: str
    name: str
    kind: str
    online: bool
    latency_ms: int
    last_checked: datetime
    status_code: Optional[int] = None
    error: Optional[str] = None
    vendor_kind: Optional[str] = None  # shape the payload was recognized as
    sessions: list[Session] = field(default_factory=list)
    summary: BackendSummary = field(default_factory=BackendSummary)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.kind,
            "online": self.online,
            "statusCode": self.status_code,
            "error": self.error,
            "latency": self.latency_ms,
            "payloadType": self.vendor_kind,
            "sessions": [s.to_dict() for s in self.sessions],
            "sessionCount": len(self.sessions),
            "summary": self.summary.to_dict(),
            "lastChecked": self.last_checked.isoformat() + "Z",
        }


@dataclass
class PollMeta:
    """Cycle-level metadata for the most recent completed poll."""
    timestamp: Optional[datetime] = None
    duration_ms: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat() + "Z" if self.timestamp else None,
            "durationMs": self.duration_ms,
            "error": self.error,
        }


# =============================================================================
# Notifications
# =============================================================================

@dataclass(frozen=True)
class Notification:
    """An alert derived from backend status. Never persisted."""
    id: str
    kind: str
    severity: str
    server_id: str
    server_name: str
    message: str
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "severity": self.severity,
            "serverId": self.server_id,
            "serverName": self.server_name,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() + "Z",
        }
