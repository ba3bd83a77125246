"""
Notification engine.

Evaluates alert rules against the backend status map and dispatches only
alerts that were not active after the previous cycle. A condition that
persists fires once; it fires again only after clearing and reoccurring.
"""
import logging
from datetime import datetime
from typing import Iterable, Optional

from alert_methods import ChannelDispatcher
from config import NotificationRules, get_settings
from monitor_schema import AlertKind, BackendStatus, Notification, Severity
from session_normalizer import is_transcoding
from status_store import NotificationDedupSet

# Imported for their @register_method side effect
import alert_methods_discord  # noqa: F401
import alert_methods_push  # noqa: F401
import alert_methods_slack  # noqa: F401
import alert_methods_sms  # noqa: F401
import alert_methods_smtp  # noqa: F401
import alert_methods_telegram  # noqa: F401
import alert_methods_webhook  # noqa: F401

logger = logging.getLogger(__name__)

SEVERITY_BY_KIND = {
    AlertKind.OFFLINE: Severity.ERROR,
    AlertKind.WAN_TRANSCODE: Severity.WARN,
    AlertKind.ANY_WAN: Severity.INFO,
    AlertKind.HIGH_BANDWIDTH: Severity.WARN,
    AlertKind.HIGH_WAN_BANDWIDTH: Severity.WARN,
}


def notification_id(kind: AlertKind, backend_id: str) -> str:
    return f"{kind.id_prefix}-{backend_id}"


def _is_wan(location: Optional[str]) -> bool:
    return "WAN" in (location or "").upper()


def _make(kind: AlertKind, status: BackendStatus, message: str, timestamp: datetime) -> Notification:
    return Notification(
        id=notification_id(kind, status.id),
        kind=kind.value,
        severity=SEVERITY_BY_KIND[kind].value,
        server_id=status.id,
        server_name=status.name,
        message=message,
        timestamp=timestamp,
    )


def evaluate_status(
    status: BackendStatus,
    rules: NotificationRules,
    timestamp: Optional[datetime] = None,
) -> list[Notification]:
    """Alerts raised by one backend's status."""
    timestamp = timestamp or datetime.utcnow()
    notifications: list[Notification] = []

    if not status.online:
        # No data from an offline backend, so no other rule applies
        if rules.offline_enabled:
            reason = status.error or (f"HTTP {status.status_code}" if status.status_code else "unreachable")
            notifications.append(_make(AlertKind.OFFLINE, status, f"{status.name} is offline: {reason}", timestamp))
        return notifications

    wan_sessions = [s for s in status.sessions if _is_wan(s.location)]

    if rules.wan_transcode_enabled:
        wan_transcodes = [s for s in wan_sessions if is_transcoding(s)]
        if wan_transcodes:
            users = ", ".join(sorted({s.user for s in wan_transcodes}))
            notifications.append(_make(
                AlertKind.WAN_TRANSCODE, status,
                f"{len(wan_transcodes)} remote session(s) transcoding on {status.name} ({users})",
                timestamp,
            ))

    if rules.any_wan_enabled and wan_sessions:
        users = ", ".join(sorted({s.user for s in wan_sessions}))
        notifications.append(_make(
            AlertKind.ANY_WAN, status,
            f"{len(wan_sessions)} remote session(s) on {status.name} ({users})",
            timestamp,
        ))

    total = status.summary.total_bandwidth
    if rules.high_bandwidth_enabled and total > rules.high_bandwidth_threshold_mbps:
        notifications.append(_make(
            AlertKind.HIGH_BANDWIDTH, status,
            f"{status.name} bandwidth {total:.1f} Mbps exceeds {rules.high_bandwidth_threshold_mbps:g} Mbps",
            timestamp,
        ))

    wan_total = status.summary.wan_bandwidth
    if rules.high_wan_bandwidth_enabled and wan_total > rules.high_wan_bandwidth_threshold_mbps:
        notifications.append(_make(
            AlertKind.HIGH_WAN_BANDWIDTH, status,
            f"{status.name} WAN bandwidth {wan_total:.1f} Mbps exceeds "
            f"{rules.high_wan_bandwidth_threshold_mbps:g} Mbps",
            timestamp,
        ))

    return notifications


def evaluate(
    statuses: Iterable[BackendStatus],
    rules: NotificationRules,
    timestamp: Optional[datetime] = None,
) -> list[Notification]:
    """Current notification snapshot for every backend, in status order."""
    timestamp = timestamp or datetime.utcnow()
    notifications: list[Notification] = []
    for status in statuses:
        notifications.extend(evaluate_status(status, rules, timestamp))
    return notifications


class NotificationEngine:
    """
    Edge-triggered alerting over successive status snapshots.

    The dedup set is the only state carried between cycles.
    """

    def __init__(
        self,
        dispatcher: ChannelDispatcher,
        dedup: Optional[NotificationDedupSet] = None,
        rules: Optional[NotificationRules] = None,
    ):
        self.dispatcher = dispatcher
        self.dedup = dedup if dedup is not None else NotificationDedupSet()
        self._rules = rules

    @property
    def rules(self) -> NotificationRules:
        if self._rules is not None:
            return self._rules
        return get_settings().notification_rules

    def current(self, statuses: Iterable[BackendStatus]) -> list[Notification]:
        """Recompute alerts on demand. Does not touch dispatch state."""
        return evaluate(statuses, self.rules)

    def process_cycle(self, statuses: Iterable[BackendStatus]) -> list[Notification]:
        """
        Evaluate, keep only newly raised alerts, and hand them to the dispatcher.

        The previous-cycle set is replaced by this cycle's set even when
        nothing fires. Returns the notifications that were dispatched.
        """
        snapshot = evaluate(statuses, self.rules)
        newly_active = self.dedup.advance(n.id for n in snapshot)
        fired = [n for n in snapshot if n.id in newly_active]

        if fired:
            logger.info(f"Raising {len(fired)} new notification(s): {', '.join(n.id for n in fired)}")
            self.dispatcher.dispatch(fired)
        else:
            logger.debug(f"No new notifications ({len(snapshot)} active)")
        return fired
