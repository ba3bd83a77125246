"""
Session Normalizer

Maps the session payloads of Plex, Jellyfin/Emby and flat custom APIs onto
the canonical Session model and computes the per-backend summary.

Every canonical field is read through an ordered tuple of extractor
functions; the first one that yields a non-empty value wins. Missing or
oddly typed vendor fields degrade to the field's default instead of raising,
so the fallback order for any field can be read (and tested) in one place.

The module is pure: no I/O, no module-level mutable state.
"""
import ipaddress
import logging
import re
from typing import Any, Callable, Iterable, Optional
from urllib.parse import quote

from monitor_schema import BackendDescriptor, BackendSummary, NormalizedPayload, Session

logger = logging.getLogger(__name__)

Extractor = Callable[[Any], Any]

# Jellyfin/Emby report positions in 100ns ticks
TICKS_PER_SECOND = 10_000_000

# Values above this after unit conversion are assumed to still be kbps.
# This is a heuristic carried over for compatibility, not a documented vendor
# contract: a genuine >1 Gbps stream would be under-reported.
KBPS_CORRECTION_THRESHOLD = 1000

JELLYFIN_VENDOR_LABEL = "jellyfin/emby"

_LEADING_NUMBER = re.compile(r"\d+(?:\.\d+)?|\.\d+")


# =============================================================================
# Extraction helpers
# =============================================================================

def dig(obj: Any, *keys: Any) -> Any:
    """Walk nested dicts/lists, returning None at the first missing step."""
    current = obj
    for key in keys:
        if isinstance(key, int):
            if not isinstance(current, list) or not -len(current) <= key < len(current):
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def field(*keys: Any) -> Extractor:
    """Extractor reading a nested path."""
    return lambda obj: dig(obj, *keys)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, (list, dict)) and not value)


def first_of(obj: Any, extractors: Iterable[Extractor], default: Any = None) -> Any:
    """Return the first non-empty extractor result, or ``default``."""
    for extractor in extractors:
        try:
            value = extractor(obj)
        except (TypeError, ValueError, AttributeError, KeyError, IndexError, ZeroDivisionError):
            value = None
        if not _is_empty(value):
            return value
    return default


def _number(value: Any) -> Optional[float]:
    """Numeric value of a real number (bools excluded), else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _to_float(value: Any) -> Optional[float]:
    """Numeric value of a number or a fully numeric string."""
    number = _number(value)
    if number is not None:
        return number
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def leading_number(value: Any) -> Optional[float]:
    """Number, or the first numeric run of a string such as ``"12.5 Mbps"``."""
    number = _number(value)
    if number is not None:
        return number
    if isinstance(value, str):
        match = _LEADING_NUMBER.search(value)
        if match:
            return float(match.group(0))
    return None


def _to_int(value: Any) -> Optional[int]:
    number = _to_float(value)
    return int(number) if number is not None else None


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value)


def correct_kbps(mbps: float) -> float:
    """Divide by 1000 again when a supposed Mbps value still looks like kbps."""
    if mbps > KBPS_CORRECTION_THRESHOLD:
        return mbps / 1000
    return mbps


def clamp_percent(value: float) -> int:
    return max(0, min(100, int(round(value))))


def progress_percent(position: Optional[float], duration: Optional[float]) -> int:
    """Playback progress in percent, 0 unless both values are positive."""
    if not position or not duration or position <= 0 or duration <= 0:
        return 0
    return clamp_percent(position / duration * 100)


def location_label(value: Any) -> str:
    """Canonical location: "LAN", "WAN" or "" when unknown."""
    text = (_text(value) or "").upper()
    if "LAN" in text or text == "LOCAL":
        return "LAN"
    if "WAN" in text or text == "REMOTE":
        return "WAN"
    return ""


def address_location(address: Optional[str]) -> str:
    """Classify a client address: private/loopback is LAN, anything else WAN."""
    if not address:
        return ""
    host = address.strip()
    if host.startswith("["):
        host = host[1:].split("]", 1)[0]
    elif host.count(":") == 1:
        host = host.split(":", 1)[0]
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return "WAN"
    if ip.is_private or ip.is_loopback or ip.is_link_local:
        return "LAN"
    return "WAN"


def resolution_label(resolution: Any) -> str:
    text = (_text(resolution) or "").strip()
    if not text:
        return ""
    if text.isdigit():
        return f"{text}p"
    if text.lower() in ("4k", "sd", "hd"):
        return text.upper()
    return text


def quality_label(resolution: Any, bandwidth: float) -> str:
    res = resolution_label(resolution)
    if res and bandwidth:
        return f"{res} ({bandwidth:.1f} Mbps)"
    if res:
        return res
    if bandwidth:
        return f"{bandwidth:.1f} Mbps"
    return ""


def resolve_poster(path: Optional[str], backend_id: str, proxy_base: str) -> Optional[str]:
    """
    Absolute URLs pass through; relative vendor paths go through the artwork
    proxy so the backend credential is never handed to the caller.
    """
    if not path:
        return None
    if path.startswith(("http://", "https://")):
        return path
    return f"{proxy_base.rstrip('/')}/{quote(backend_id, safe='')}?path={quote(path, safe='')}"


def is_transcoding(session: Session) -> bool:
    """Explicit flag first, then the stream label, then the state label."""
    if isinstance(session.transcoding, bool):
        return session.transcoding
    if "transcode" in (session.stream or "").lower():
        return True
    return "transcode" in (session.state or "").lower()


def summarize(sessions: list[Session]) -> BackendSummary:
    summary = BackendSummary()
    for session in sessions:
        if is_transcoding(session):
            summary.transcodes += 1
        else:
            summary.direct_plays += 1

        bandwidth = session.bandwidth or 0.0
        summary.total_bandwidth += bandwidth
        location = (session.location or "").upper()
        if "LAN" in location:
            summary.lan_bandwidth += bandwidth
        if "WAN" in location:
            summary.wan_bandwidth += bandwidth
    return summary


# =============================================================================
# Plex
# =============================================================================

def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _plex_part_decisions(m: dict) -> list[str]:
    decisions = []
    for media in _as_list(m.get("Media")):
        if not isinstance(media, dict):
            continue
        decisions.append(media.get("decision"))
        for part in _as_list(media.get("Part")):
            if isinstance(part, dict):
                decisions.append(part.get("decision"))
    return [d for d in decisions if isinstance(d, str)]


def plex_is_transcoding(m: dict) -> bool:
    return any(d.lower() == "transcode" for d in _plex_part_decisions(m))


def _plex_stream(m: dict, stream_type: int) -> Optional[dict]:
    """First Media/Part/Stream entry of the given Plex streamType (1 video, 2 audio, 3 subtitle)."""
    for media in _as_list(m.get("Media")):
        for part in _as_list(dig(media, "Part")):
            for stream in _as_list(dig(part, "Stream")):
                if isinstance(stream, dict) and _to_int(stream.get("streamType")) == stream_type:
                    return stream
    return None


def _join(*parts: Any) -> str:
    return " ".join(str(p) for p in parts if not _is_empty(p)).strip()


def _with_decision(decision: Any, detail: str) -> str:
    if decision:
        return f"{decision} ({detail})" if detail else str(decision)
    return detail


PLEX_BANDWIDTH: tuple[Extractor, ...] = (
    lambda m: _number(dig(m, "Session", "bandwidth")) / 1000,
    lambda m: _to_float(dig(m, "TranscodeSession", "bitrate")) / 1000,
    lambda m: leading_number(m.get("bandwidth")),
)

PLEX_USER = (field("user"), field("User", "title"))
PLEX_TITLE = (field("media_title"), field("grandparentTitle"), field("title"))
PLEX_EPISODE = (field("episode"), lambda m: m.get("title") if m.get("grandparentTitle") else None)
PLEX_PLATFORM = (field("platform"), field("Player", "platform"), field("Player", "product"))
PLEX_STATE = (field("state"), field("Player", "state"))
PLEX_PRODUCT = (field("product"), field("Player", "product"))
PLEX_PLAYER = (field("player"), field("Player", "title"))
PLEX_CONTAINER = (field("container"), field("Media", 0, "container"))
PLEX_RESOLUTION = (field("Media", 0, "videoResolution"), field("Video", 0, "resolution"))
PLEX_IP = (field("Player", "address"), field("Player", "remotePublicAddress"))

PLEX_VIDEO = (
    field("video"),
    lambda m: _with_decision(
        dig(m, "Video", 0, "decision"),
        _join(dig(m, "Video", 0, "codec"), dig(m, "Video", 0, "resolution")),
    ),
    lambda m: _with_decision(
        dig(_plex_stream(m, 1), "decision"),
        _join(dig(_plex_stream(m, 1), "codec"), dig(m, "Media", 0, "videoResolution")),
    ),
)
PLEX_AUDIO = (
    field("audio"),
    lambda m: _with_decision(
        dig(m, "Audio", 0, "decision"),
        _join(dig(m, "Audio", 0, "language"), dig(m, "Audio", 0, "codec"), dig(m, "Audio", 0, "channels")),
    ),
    lambda m: _with_decision(
        dig(_plex_stream(m, 2), "decision"),
        _join(
            dig(_plex_stream(m, 2), "language"),
            dig(_plex_stream(m, 2), "codec"),
            dig(_plex_stream(m, 2), "channels"),
        ),
    ),
)
PLEX_SUBTITLE = (
    field("subtitle"),
    field("Subtitle", 0, "language"),
    lambda m: dig(_plex_stream(m, 3), "language"),
)
PLEX_LOCATION = (
    lambda m: location_label(m.get("location")),
    lambda m: {True: "LAN", False: "WAN"}.get(dig(m, "Player", "local")),
    lambda m: location_label(dig(m, "Session", "location")),
    lambda m: address_location(first_of(m, PLEX_IP)),
)


def _plex_poster_path(m: dict) -> Optional[str]:
    # Season/show artwork reads better than an episode still
    if m.get("type") == "episode":
        order = ("parentThumb", "grandparentThumb", "thumb")
    else:
        order = ("thumb", "parentThumb", "grandparentThumb")
    return first_of(m, (field("poster"),) + tuple(field(key) for key in order))


def plex_bandwidth(m: dict) -> float:
    return correct_kbps(first_of(m, PLEX_BANDWIDTH, 0.0))


def normalize_plex_session(m: dict, backend_id: str, proxy_base: str) -> Session:
    transcoding = plex_is_transcoding(m)
    bandwidth = plex_bandwidth(m)
    duration_ms = _number(m.get("duration")) or 0.0
    offset_ms = _number(m.get("viewOffset")) or 0.0

    # A zero from the server means "not reported"; fall back to the offset
    explicit_progress = _number(m.get("progress"))
    if explicit_progress is not None and explicit_progress > 0:
        progress = clamp_percent(explicit_progress)
    else:
        progress = progress_percent(offset_ms, duration_ms)

    is_episode = m.get("type") == "episode"
    live = m.get("type") == "live" or str(m.get("live", "")) in ("1", "True", "true")

    return Session(
        user=_text(first_of(m, PLEX_USER, "Unknown")),
        title=_text(first_of(m, PLEX_TITLE, "Unknown")),
        episode=_text(first_of(m, PLEX_EPISODE)),
        year=_to_int(m.get("year")),
        platform=_text(first_of(m, PLEX_PLATFORM, "")),
        state=_text(first_of(m, PLEX_STATE, "")),
        poster=resolve_poster(_text(_plex_poster_path(m)), backend_id, proxy_base),
        duration=int(round(duration_ms / 1000)),
        view_offset=int(round(offset_ms / 1000)),
        progress=progress,
        product=_text(first_of(m, PLEX_PRODUCT, "")),
        player=_text(first_of(m, PLEX_PLAYER, "")),
        quality=_text(first_of(m, (field("quality"),), "")) or quality_label(first_of(m, PLEX_RESOLUTION), bandwidth),
        stream=_text(first_of(m, (field("stream"), field("transcodeDecision")), "")) or (
            "Transcode" if transcoding else "Direct Play"
        ),
        container=_text(first_of(m, PLEX_CONTAINER, "")),
        video=_text(first_of(m, PLEX_VIDEO, "")),
        audio=_text(first_of(m, PLEX_AUDIO, "")),
        subtitle=_text(first_of(m, PLEX_SUBTITLE, "None")),
        location=first_of(m, PLEX_LOCATION, ""),
        ip=_text(first_of(m, PLEX_IP, "")),
        bandwidth=bandwidth,
        transcoding=transcoding,
        season=_to_int(m.get("parentIndex")) if is_episode else None,
        episode_number=_to_int(m.get("index")) if is_episode else None,
        live=live,
        channel=_text(first_of(m, (field("channelTitle"),), "")),
        episode_title=_text(first_of(m, (field("episodeTitle"),), "")),
        user_name=_text(first_of(m, PLEX_USER, "")),
    )


# =============================================================================
# Jellyfin / Emby
# =============================================================================

def _media_stream(s: dict, *types: str) -> Optional[dict]:
    for stream in _as_list(dig(s, "NowPlayingItem", "MediaStreams")):
        if isinstance(stream, dict) and stream.get("Type") in types:
            return stream
    return None


def _stream_value(stream: Optional[dict], name: str) -> Any:
    """Jellyfin uses PascalCase, some proxies lower-case the keys."""
    if not stream:
        return None
    return first_of(stream, (field(name), field(name.lower())))


def jellyfin_stream_label(s: dict) -> str:
    """Play method, then the direct/indirect transcoding flag, then free-text state."""
    return _text(first_of(s, JELLYFIN_STREAM, "")) or ""


JELLYFIN_STREAM: tuple[Extractor, ...] = (
    field("PlayState", "PlayMethod"),
    lambda s: {False: "Transcode", True: "DirectPlay"}.get(dig(s, "TranscodingInfo", "IsVideoDirect")),
    field("state"),
)

JELLYFIN_BANDWIDTH: tuple[Extractor, ...] = (
    lambda s: leading_number(s.get("bandwidth")),
    lambda s: _to_float(dig(s, "TranscodingInfo", "Bitrate")) / 1_000_000,
    lambda s: _to_float(_stream_value(_media_stream(s, "Video"), "BitRate")) / 1_000_000,
    lambda s: _to_float(_stream_value(_media_stream(s, "Video"), "Bitrate")) / 1_000_000,
)

JELLYFIN_QUALITY: tuple[Extractor, ...] = (
    lambda s: _dimensions(_stream_value(_media_stream(s, "Video"), "Width"),
                          _stream_value(_media_stream(s, "Video"), "Height")),
    lambda s: _dimensions(dig(s, "TranscodingInfo", "Width"), dig(s, "TranscodingInfo", "Height")),
)

JELLYFIN_LOCATION: tuple[Extractor, ...] = (
    lambda s: {True: "LAN", False: "WAN"}.get(s.get("IsInLocalNetwork")),
    lambda s: address_location(_text(s.get("RemoteEndPoint"))),
)

JELLYFIN_PLATFORM = (field("Client"), field("DeviceName"))
JELLYFIN_PLAYER = (field("DeviceName"), field("Client"))
JELLYFIN_CONTAINER = (field("NowPlayingItem", "Container"), field("TranscodingInfo", "Container"))

LIVE_ITEM_TYPES = ("TvChannel", "LiveTv")


def _dimensions(width: Any, height: Any) -> Optional[str]:
    if width and height:
        return f"{width}x{height}"
    return None


def _jellyfin_poster_path(s: dict) -> Optional[str]:
    item = s.get("NowPlayingItem") or {}
    if item.get("Type") == "Episode" and item.get("SeriesId") and item.get("SeriesPrimaryImageTag"):
        return f"/Items/{item['SeriesId']}/Images/Primary"
    if item.get("Id") and dig(item, "ImageTags", "Primary"):
        return f"/Items/{item['Id']}/Images/Primary"
    return None


def _jellyfin_video(s: dict) -> str:
    stream = _media_stream(s, "Video")
    if not stream:
        return ""
    return _join(_stream_value(stream, "Codec"), _dimensions(_stream_value(stream, "Width"),
                                                             _stream_value(stream, "Height")))


def _jellyfin_audio(s: dict) -> str:
    stream = _media_stream(s, "Audio")
    if not stream:
        return ""
    channels = _stream_value(stream, "Channels")
    return _join(
        _stream_value(stream, "Codec"),
        _stream_value(stream, "Language"),
        f"{channels}ch" if channels else None,
    )


def _jellyfin_subtitle(s: dict) -> str:
    stream = _media_stream(s, "Subtitle", "Subtitles")
    if not stream:
        return "None"
    return _text(_stream_value(stream, "Language")) or "Subtitle"


def normalize_jellyfin_session(s: dict, backend_id: str, proxy_base: str) -> Session:
    item = s.get("NowPlayingItem") or {}
    stream = jellyfin_stream_label(s)
    lowered = stream.lower()
    if "transcode" in lowered:
        transcoding: Optional[bool] = True
    elif "direct" in lowered:
        transcoding = False
    else:
        transcoding = None

    runtime_ticks = _number(item.get("RunTimeTicks")) or 0.0
    position_ticks = _number(dig(s, "PlayState", "PositionTicks")) or 0.0
    is_episode = item.get("Type") == "Episode"
    live = item.get("Type") in LIVE_ITEM_TYPES

    return Session(
        user=_text(first_of(s, (field("UserName"),), "Unknown")),
        title=_text(first_of(item, (
            lambda i: i.get("SeriesName") if is_episode else None,
            field("Name"),
        ), "Idle")),
        episode=_text(first_of(item, (
            field("EpisodeTitle"),
            lambda i: i.get("Name") if is_episode and i.get("SeriesName") else None,
        ))),
        year=_to_int(item.get("ProductionYear")),
        platform=_text(first_of(s, JELLYFIN_PLATFORM, "")),
        state=_text(first_of(s, (field("PlayState", "PlayMethod"),), "")),
        poster=resolve_poster(_jellyfin_poster_path(s), backend_id, proxy_base),
        duration=int(round(runtime_ticks / TICKS_PER_SECOND)),
        view_offset=int(round(position_ticks / TICKS_PER_SECOND)),
        progress=progress_percent(position_ticks, runtime_ticks),
        product=_text(first_of(s, JELLYFIN_PLATFORM, "")),
        player=_text(first_of(s, JELLYFIN_PLAYER, "")),
        quality=first_of(s, JELLYFIN_QUALITY, ""),
        stream=stream,
        container=_text(first_of(s, JELLYFIN_CONTAINER, "")),
        video=_jellyfin_video(s),
        audio=_jellyfin_audio(s),
        subtitle=_jellyfin_subtitle(s),
        location=first_of(s, JELLYFIN_LOCATION, ""),
        ip=_text(first_of(s, (field("RemoteEndPoint"),), "")),
        bandwidth=first_of(s, JELLYFIN_BANDWIDTH, 0.0),
        transcoding=transcoding,
        season=_to_int(item.get("ParentIndexNumber")) if is_episode else None,
        episode_number=_to_int(item.get("IndexNumber")) if is_episode else None,
        live=live,
        channel=_text(first_of(item, (field("ChannelName"), lambda i: i.get("Name") if live else None), "")),
        user_name=_text(first_of(s, (field("UserName"),), "")),
    )


# =============================================================================
# Flat / custom shape
# =============================================================================

def _flat_progress(value: Any) -> int:
    number = _number(value)
    if number is None:
        return 0
    # Fractions in [0, 1] are scaled; anything larger is already a percentage
    if 0 <= number <= 1:
        number *= 100
    return clamp_percent(number)


def normalize_flat_session(s: dict, backend_id: str, proxy_base: str) -> Session:
    duration = _number(s.get("duration")) or 0.0
    view_offset = _number(s.get("viewOffset")) or 0.0
    transcoding = s.get("transcoding")

    if _number(s.get("progress")) is not None:
        progress = _flat_progress(s.get("progress"))
    else:
        progress = progress_percent(view_offset, duration)

    return Session(
        user=_text(first_of(s, (field("user"), field("UserName")), "Unknown")),
        title=_text(first_of(s, (field("media_title"), field("title")), "Idle")),
        episode=_text(s.get("episode")),
        year=_to_int(s.get("year")),
        platform=_text(first_of(s, (field("platform"), field("Client"), field("DeviceName")), "")),
        state=_text(s.get("state")) or "",
        poster=resolve_poster(_text(s.get("poster")), backend_id, proxy_base),
        duration=int(round(duration)),
        view_offset=int(round(view_offset)),
        progress=progress,
        product=_text(s.get("product")) or "",
        player=_text(s.get("player")) or "",
        quality=_text(s.get("quality")) or "",
        stream=_text(s.get("stream")) or "",
        container=_text(s.get("container")) or "",
        video=_text(s.get("video")) or "",
        audio=_text(s.get("audio")) or "",
        subtitle=_text(s.get("subtitle")) or "None",
        location=location_label(s.get("location")),
        ip=_text(first_of(s, (field("ip"), field("address")), "")),
        bandwidth=leading_number(s.get("bandwidth")) or 0.0,
        transcoding=transcoding if isinstance(transcoding, bool) else None,
        season=_to_int(s.get("season")),
        episode_number=_to_int(s.get("episode_number")),
        live=bool(s.get("live")),
        channel=_text(s.get("channel")) or "",
        episode_title=_text(s.get("episodeTitle")) or "",
        user_name=_text(first_of(s, (field("user"), field("UserName")), "")),
    )


def _is_flat_shape(entry: Any) -> bool:
    # Idle flat entries carry a state but no media_title
    return (
        isinstance(entry, dict)
        and "state" in entry
        and "NowPlayingItem" not in entry
        and "PlayState" not in entry
    )


def _is_flat_playing(entry: Any) -> bool:
    return (
        isinstance(entry, dict)
        and isinstance(entry.get("state"), str)
        and entry["state"].lower() == "playing"
        and bool(entry.get("media_title"))
    )


def _is_now_playing(entry: Any) -> bool:
    # Every entry with a now-playing item counts, whatever its play state says;
    # these vendors don't reliably report idle sessions separately.
    return (
        isinstance(entry, dict)
        and isinstance(entry.get("NowPlayingItem"), dict)
        and bool(entry["NowPlayingItem"])
        and isinstance(entry.get("PlayState"), dict)
    )


# =============================================================================
# Entry point
# =============================================================================

def _type_tag(payload: Any) -> str:
    if payload is None:
        return "unknown"
    return type(payload).__name__


def normalize_payload(
    payload: Any,
    descriptor: BackendDescriptor,
    proxy_base: str = "/api/artwork",
) -> NormalizedPayload:
    """
    Normalize one raw vendor payload.

    Dispatch order: Plex media-container envelope, then a non-empty list
    (flat custom shape or Jellyfin/Emby sessions, decided by the first
    element), then anything else as an empty result tagged with the
    payload's type.
    """
    if isinstance(payload, dict) and "MediaContainer" in payload:
        sessions = [
            normalize_plex_session(m, descriptor.id, proxy_base)
            for m in _as_list(dig(payload, "MediaContainer", "Metadata"))
            if isinstance(m, dict)
        ]
        return NormalizedPayload("plex", sessions, summarize(sessions))

    if isinstance(payload, list) and payload:
        if _is_flat_shape(payload[0]):
            sessions = [
                normalize_flat_session(s, descriptor.id, proxy_base)
                for s in payload
                if _is_flat_playing(s)
            ]
        else:
            sessions = [
                normalize_jellyfin_session(s, descriptor.id, proxy_base)
                for s in payload
                if _is_now_playing(s)
            ]
        return NormalizedPayload(JELLYFIN_VENDOR_LABEL, sessions, summarize(sessions))

    return NormalizedPayload(_type_tag(payload), [], BackendSummary())
