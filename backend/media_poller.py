"""
Background polling service.

Fetches the session endpoint of every enabled backend concurrently on a
fixed cadence, normalizes the payloads, publishes one BackendStatus per
backend, and then (once per cycle, after every fetch has settled) records
history and raises notifications.
"""
import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

import httpx

from alert_methods import ChannelDispatcher
from config import get_settings
from history_recorder import HistoryRecorder
from monitor_schema import BackendDescriptor, BackendStatus, NormalizedPayload, PollMeta, VendorKind
from notification_engine import NotificationEngine
from server_registry import BackendRegistry
from session_normalizer import normalize_payload
from status_store import NotificationDedupSet, StatusRepository

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 15
DEFAULT_FETCH_TIMEOUT = 10.0

DEFAULT_API_PATHS = {
    VendorKind.PLEX.value: "/status/sessions",
    VendorKind.JELLYFIN.value: "/Sessions",
    VendorKind.EMBY.value: "/Sessions",
}
# Older configs pointed Jellyfin/Emby at the server info endpoint, which has no sessions
LEGACY_INFO_PATH = "/System/Info"

TOKEN_HEADERS = {
    VendorKind.PLEX.value: "X-Plex-Token",
    VendorKind.JELLYFIN.value: "X-MediaBrowser-Token",
    VendorKind.EMBY.value: "X-Emby-Token",
}
TOKEN_QUERY_PARAMS = {
    VendorKind.PLEX.value: "X-Plex-Token",
    VendorKind.JELLYFIN.value: "api_key",
    VendorKind.EMBY.value: "X-Emby-Token",
}
GENERIC_TOKEN_QUERY_PARAM = "api_key"


def effective_path(descriptor: BackendDescriptor) -> str:
    kind = descriptor.kind
    if kind in (VendorKind.JELLYFIN.value, VendorKind.EMBY.value):
        if not descriptor.api_path or descriptor.api_path == LEGACY_INFO_PATH:
            return DEFAULT_API_PATHS[kind]
    return descriptor.api_path or DEFAULT_API_PATHS.get(kind, "/")


def default_token_location(kind: str) -> str:
    return "query" if kind == VendorKind.PLEX.value else "header"


def build_request(descriptor: BackendDescriptor) -> tuple[httpx.URL, dict[str, str]]:
    """
    URL and headers for one backend fetch.

    A query string in the configured api_path is kept; a query-placed token
    is merged into it.
    """
    url = httpx.URL(descriptor.base_url.rstrip("/") + effective_path(descriptor))
    # Plex answers with XML unless JSON is asked for
    headers = {"Accept": "application/json"}

    if descriptor.token:
        location = descriptor.token_location or default_token_location(descriptor.kind)
        if location == "header":
            header = TOKEN_HEADERS.get(descriptor.kind)
            if header:
                headers[header] = descriptor.token
            else:
                headers["Authorization"] = f"Bearer {descriptor.token}"
        else:
            param = TOKEN_QUERY_PARAMS.get(descriptor.kind, GENERIC_TOKEN_QUERY_PARAM)
            url = url.copy_merge_params({param: descriptor.token})
    return url, headers


def describe_error(error: Exception, timeout: float) -> str:
    """Short error text. Never includes the request URL, which may carry a token."""
    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        return f"HTTP {response.status_code} {response.reason_phrase}".strip()
    if isinstance(error, httpx.TimeoutException):
        return f"Timed out after {timeout:g}s"
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


class MediaPoller:
    """
    Periodic poller over all enabled backends.

    Cycles never overlap: a tick that arrives while a cycle is still running
    is skipped, and the loop waits out only the remainder of the interval.
    """

    def __init__(
        self,
        registry: BackendRegistry,
        statuses: Optional[StatusRepository] = None,
        recorder: Optional[HistoryRecorder] = None,
        notifier: Optional[NotificationEngine] = None,
        poll_interval: Optional[float] = None,
        fetch_timeout: Optional[float] = None,
        proxy_base: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.registry = registry
        self.statuses = statuses if statuses is not None else StatusRepository()
        self.recorder = recorder
        self.notifier = notifier
        self.poll_interval = poll_interval if poll_interval is not None else settings.poll_interval_seconds
        self.fetch_timeout = fetch_timeout if fetch_timeout is not None else settings.fetch_timeout_seconds
        self.proxy_base = proxy_base if proxy_base is not None else settings.artwork_proxy_path
        self._transport = transport
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._cycle_lock = asyncio.Lock()

    async def start(self):
        """Start the background polling task. The first cycle runs immediately."""
        if self._running:
            logger.warning("MediaPoller already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"MediaPoller started (polling every {self.poll_interval}s)")

    async def stop(self):
        """Stop the background polling task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("MediaPoller stopped")

    @property
    def running(self) -> bool:
        return self._running

    async def _poll_loop(self):
        """Main polling loop - runs until stopped."""
        while self._running:
            started = time.monotonic()
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"MediaPoller error: {e}")

            delay = max(0.0, self.poll_interval - (time.monotonic() - started))
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                break

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.fetch_timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    async def poll_backend(self, descriptor: BackendDescriptor, client: httpx.AsyncClient) -> BackendStatus:
        """
        Fetch and normalize one backend, then publish its status.

        Never raises: every failure becomes an offline status.
        """
        url, headers = build_request(descriptor)
        started = time.monotonic()

        try:
            response = await client.get(url, headers=headers)
            response.raise_for_status()
        except Exception as e:
            latency_ms = int((time.monotonic() - started) * 1000)
            status_code = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            status = BackendStatus(
                id=descriptor.id,
                name=descriptor.name,
                kind=descriptor.kind,
                online=False,
                latency_ms=latency_ms,
                last_checked=datetime.utcnow(),
                status_code=status_code,
                error=describe_error(e, self.fetch_timeout),
            )
            logger.warning(f"Backend {descriptor.name} ({descriptor.base_url}) offline: {status.error}")
            self.statuses.publish(status)
            return status

        latency_ms = int((time.monotonic() - started) * 1000)
        normalized = self._normalize(response, descriptor)
        status = BackendStatus(
            id=descriptor.id,
            name=descriptor.name,
            kind=descriptor.kind,
            online=True,
            latency_ms=latency_ms,
            last_checked=datetime.utcnow(),
            status_code=response.status_code,
            vendor_kind=normalized.vendor_kind,
            sessions=normalized.sessions,
            summary=normalized.summary,
        )
        logger.debug(
            f"Backend {descriptor.name}: {len(status.sessions)} sessions, "
            f"{status.summary.total_bandwidth:.1f} Mbps, {latency_ms}ms"
        )
        self.statuses.publish(status)
        return status

    def _normalize(self, response: httpx.Response, descriptor: BackendDescriptor) -> NormalizedPayload:
        """Malformed payloads degrade to an empty result; they never fail the poll."""
        try:
            payload = response.json()
        except ValueError as e:
            logger.warning(f"Backend {descriptor.name} returned a non-JSON body: {e}")
            return NormalizedPayload("unknown")

        try:
            return normalize_payload(payload, descriptor, self.proxy_base)
        except Exception as e:
            logger.exception(f"Session extraction failed for backend {descriptor.name}: {e}")
            return NormalizedPayload("unknown")

    async def run_cycle(self) -> bool:
        """
        Run one poll cycle now.

        Returns False without doing anything if another cycle is in progress.
        """
        if self._cycle_lock.locked():
            logger.warning("Previous poll cycle still running, skipping")
            return False

        async with self._cycle_lock:
            await self._run_cycle()
        return True

    async def _run_cycle(self) -> None:
        started = time.monotonic()
        cycle_error: Optional[str] = None
        descriptors: list[BackendDescriptor] = []

        try:
            descriptors = self.registry.list_enabled()
            if descriptors:
                async with self._client() as client:
                    await asyncio.gather(*(self.poll_backend(d, client) for d in descriptors))
            # Backends that were disabled or removed stop being reported
            self.statuses.retain(d.id for d in descriptors)
        except Exception as e:
            logger.exception(f"Poll cycle failed: {e}")
            cycle_error = str(e) or type(e).__name__

        meta = PollMeta(
            timestamp=datetime.utcnow(),
            duration_ms=int((time.monotonic() - started) * 1000),
            error=cycle_error,
        )
        self.statuses.set_meta(meta)

        snapshot = self.statuses.snapshot()
        ordered = [snapshot[d.id] for d in descriptors if d.id in snapshot] if cycle_error is None \
            else list(snapshot.values())
        logger.debug(f"Poll cycle finished in {meta.duration_ms}ms for {len(ordered)} backends")

        if self.recorder is not None:
            try:
                self.recorder.record_cycle(ordered, timestamp=meta.timestamp)
            except Exception as e:
                logger.exception(f"Failed to record history: {e}")

        if self.notifier is not None:
            try:
                self.notifier.process_cycle(ordered)
            except Exception as e:
                logger.exception(f"Failed to process notifications: {e}")

    def current_statuses(self) -> dict[str, BackendStatus]:
        return self.statuses.snapshot()

    def last_poll_meta(self) -> PollMeta:
        return self.statuses.meta


# Global poller instance
_poller: Optional[MediaPoller] = None


def get_poller() -> MediaPoller:
    """Get the global poller, wiring it to settings on first use."""
    global _poller
    if _poller is None:
        settings = get_settings()
        dispatcher = ChannelDispatcher(max_concurrent_sends=settings.max_concurrent_sends)
        dispatcher.load_channels(settings.notification_channels)
        _poller = MediaPoller(
            registry=BackendRegistry(),
            statuses=StatusRepository(),
            recorder=HistoryRecorder(),
            notifier=NotificationEngine(dispatcher, NotificationDedupSet()),
        )
    return _poller


def reset_poller() -> None:
    """Forget the global poller (after settings change, and in tests)."""
    global _poller
    _poller = None
