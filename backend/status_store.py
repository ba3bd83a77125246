"""
In-memory stores shared between the poller, the notification engine and the
API handlers.

Both are plain objects injected where needed, so several monitors (for
example in tests) never share state.
"""
import threading
from typing import Iterable, Optional

from monitor_schema import BackendStatus, PollMeta


class StatusRepository:
    """
    Latest BackendStatus per backend id.

    Writers publish a fully built record in one step; readers get a shallow
    copy of the map and never see a half-updated entry.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._statuses: dict[str, BackendStatus] = {}
        self._meta = PollMeta()

    def publish(self, status: BackendStatus) -> None:
        with self._lock:
            self._statuses[status.id] = status

    def retain(self, backend_ids: Iterable[str]) -> None:
        """Drop entries for backends that are no longer polled."""
        keep = set(backend_ids)
        with self._lock:
            self._statuses = {k: v for k, v in self._statuses.items() if k in keep}

    def get(self, backend_id: str) -> Optional[BackendStatus]:
        with self._lock:
            return self._statuses.get(backend_id)

    def snapshot(self) -> dict[str, BackendStatus]:
        with self._lock:
            return dict(self._statuses)

    def set_meta(self, meta: PollMeta) -> None:
        with self._lock:
            self._meta = meta

    @property
    def meta(self) -> PollMeta:
        with self._lock:
            return self._meta


class NotificationDedupSet:
    """Identifiers of the alerts that were active after the previous cycle."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active: frozenset[str] = frozenset()

    def advance(self, current_ids: Iterable[str]) -> set[str]:
        """
        Replace the active set with ``current_ids`` and return the identifiers
        that were not active before (the newly raised alerts).
        """
        current = frozenset(current_ids)
        with self._lock:
            newly_active = set(current - self._active)
            self._active = current
        return newly_active

    @property
    def active(self) -> frozenset[str]:
        with self._lock:
            return self._active

    def clear(self) -> None:
        with self._lock:
            self._active = frozenset()
