"""
Alert Methods Framework.

Provides the abstract base class and registry for outbound notification
channels (Discord, Slack, Telegram, webhooks, email, SMS, push), plus the
dispatcher that fans notifications out to every enabled channel.

Delivery is fire-and-forget: each (notification, channel) pair runs as its
own task, bounded by a semaphore. A failing channel never blocks the others;
its outcome is kept as the channel's last delivery record.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any, Type, List, Iterable

from config import ChannelSettings
from monitor_schema import Notification, Severity

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_SENDS = 4

SEVERITY_EMOJI = {
    Severity.INFO.value: "ℹ️",
    Severity.WARN.value: "⚠️",
    Severity.ERROR.value: "❌",
}

SEVERITY_LABELS = {
    Severity.INFO.value: "[INFO]",
    Severity.WARN.value: "[WARNING]",
    Severity.ERROR.value: "[ERROR]",
}


def format_notification_text(notification: Notification) -> str:
    """One-line human text shared by every free-text channel."""
    emoji = SEVERITY_EMOJI.get(notification.severity, "📢")
    return f"{emoji} [{notification.server_name}] {notification.message}"


def notification_title(notification: Notification) -> str:
    return f"{notification.server_name}: {notification.kind}"


class AlertMethod(ABC):
    """Abstract base class for alert methods."""

    # Method type identifier (e.g., "discord", "telegram", "smtp")
    method_type: str = ""

    # Human-readable name
    display_name: str = ""

    # Required config fields for this method type
    required_config_fields: List[str] = []

    # Optional config fields with defaults
    optional_config_fields: Dict[str, Any] = {}

    def __init__(self, name: str, config: Dict[str, Any]):
        self.name = name
        self.config = config

    @abstractmethod
    async def send(self, notification: Notification) -> tuple[bool, str]:
        """
        Deliver a notification through this method.

        Returns:
            Tuple of (success, error message or "")
        """
        pass

    async def test_connection(self) -> tuple[bool, str]:
        """
        Send a test notification.

        Returns:
            Tuple of (success, message)
        """
        test = Notification(
            id=f"test-{self.method_type}",
            kind="test",
            severity=Severity.INFO.value,
            server_id="",
            server_name="OmniStream",
            message=f"Test message for {self.display_name or self.method_type} channel '{self.name}'",
            timestamp=datetime.utcnow(),
        )
        try:
            ok, error = await self.send(test)
        except Exception as e:
            return False, f"Error during test: {e}"
        if ok:
            return True, "Test message sent successfully"
        return False, error or "Failed to send test message"

    @classmethod
    def validate_config(cls, config: Dict[str, Any]) -> tuple[bool, str]:
        """
        Validate the configuration for this method type.

        Returns:
            Tuple of (is_valid, error_message)
        """
        missing = []
        for field in cls.required_config_fields:
            if field not in config or not config[field]:
                missing.append(field)

        if missing:
            return False, f"Missing required fields: {', '.join(missing)}"

        return True, ""

    def get_config(self, key: str) -> Any:
        """Config value, falling back to the method's optional default."""
        value = self.config.get(key)
        if value is None:
            return self.optional_config_fields.get(key)
        return value

    def format_message(self, notification: Notification) -> str:
        return format_notification_text(notification)

    def get_emoji(self, severity: str) -> str:
        """Get an emoji for the severity."""
        return SEVERITY_EMOJI.get(severity, "📢")


# Method type registry
_method_registry: Dict[str, Type[AlertMethod]] = {}


def register_method(method_class: Type[AlertMethod]) -> Type[AlertMethod]:
    """Decorator to register an alert method type."""
    if not method_class.method_type:
        raise ValueError(f"Method class {method_class.__name__} must define method_type")

    _method_registry[method_class.method_type] = method_class
    logger.debug(f"Registered alert method type: {method_class.method_type}")
    return method_class


def get_method_types() -> List[Dict[str, Any]]:
    """Get list of available method types with their metadata."""
    return [
        {
            "type": cls.method_type,
            "display_name": cls.display_name,
            "required_fields": cls.required_config_fields,
            "optional_fields": cls.optional_config_fields,
        }
        for cls in _method_registry.values()
    ]


def create_method(method_type: str, name: str, config: Dict[str, Any]) -> Optional[AlertMethod]:
    """Create an alert method instance from type and config."""
    method_class = _method_registry.get(method_type)
    if not method_class:
        logger.error(f"Unknown alert method type: {method_type}. Available types: {list(_method_registry.keys())}")
        return None

    is_valid, error = method_class.validate_config(config)
    if not is_valid:
        logger.error(f"Alert method {name} ({method_type}) has invalid config: {error}")
        return None

    return method_class(name, config)


@dataclass
class DeliveryRecord:
    """Outcome of the most recent delivery attempt on one channel."""
    channel: str
    method_type: str
    ok: bool
    message: str
    notification_id: str
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "channel": self.channel,
            "type": self.method_type,
            "ok": self.ok,
            "message": self.message,
            "notificationId": self.notification_id,
            "timestamp": self.timestamp.isoformat() + "Z",
        }


class _ChannelEntry:
    def __init__(self, method: AlertMethod, settings: ChannelSettings):
        self.method = method
        self.settings = settings

    def accepts(self, severity: str) -> bool:
        return {
            Severity.INFO.value: self.settings.notify_info,
            Severity.WARN.value: self.settings.notify_warn,
            Severity.ERROR.value: self.settings.notify_error,
        }.get(severity, False)


class ChannelDispatcher:
    """
    Sends notifications to every enabled channel.

    ``dispatch()`` only schedules work and returns immediately. In-flight
    sends are tracked so shutdown and tests can ``drain()`` them.
    """

    def __init__(self, max_concurrent_sends: int = DEFAULT_MAX_CONCURRENT_SENDS):
        self._channels: Dict[str, _ChannelEntry] = {}
        self._max_concurrent = max(1, max_concurrent_sends)
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: set[asyncio.Task] = set()
        self._records: Dict[str, DeliveryRecord] = {}
        self._last_errors: Dict[str, DeliveryRecord] = {}

    def load_channels(self, channels: Iterable[ChannelSettings]) -> None:
        """Build method instances for every enabled channel config."""
        self._channels.clear()
        for channel in channels:
            if not channel.enabled:
                continue
            method = create_method(channel.method_type, channel.name, channel.config)
            if method:
                self._channels[channel.name] = _ChannelEntry(method, channel)
                logger.debug(f"Loaded notification channel: {channel.name} ({channel.method_type})")
            else:
                logger.warning(f"Failed to create notification channel: {channel.name} ({channel.method_type})")
        logger.info(f"Loaded {len(self._channels)} notification channels")

    def add_method(self, method: AlertMethod, settings: Optional[ChannelSettings] = None) -> None:
        if settings is None:
            settings = ChannelSettings(name=method.name, method_type=method.method_type)
        self._channels[method.name] = _ChannelEntry(method, settings)

    def get_method(self, name: str) -> Optional[AlertMethod]:
        entry = self._channels.get(name)
        return entry.method if entry else None

    @property
    def channel_names(self) -> list[str]:
        return list(self._channels.keys())

    def _get_semaphore(self) -> asyncio.Semaphore:
        # Created lazily so it binds to the running loop
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_concurrent)
        return self._semaphore

    def dispatch(self, notifications: Iterable[Notification]) -> int:
        """
        Schedule delivery of each notification on each accepting channel.

        Must be called from a running event loop. Returns the number of
        sends scheduled.
        """
        scheduled = 0
        for notification in notifications:
            for name, entry in self._channels.items():
                if not entry.accepts(notification.severity):
                    logger.debug(f"Channel {name} skipped: {notification.severity} not enabled")
                    continue
                task = asyncio.create_task(self._deliver(entry, notification))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                scheduled += 1
        if scheduled:
            logger.debug(f"Scheduled {scheduled} channel sends")
        return scheduled

    async def _deliver(self, entry: _ChannelEntry, notification: Notification) -> bool:
        method = entry.method
        async with self._get_semaphore():
            try:
                ok, error = await method.send(notification)
            except Exception as e:
                logger.exception(f"Channel {method.name}: unexpected error sending {notification.id}: {e}")
                ok, error = False, str(e) or type(e).__name__

        record = DeliveryRecord(
            channel=method.name,
            method_type=method.method_type,
            ok=ok,
            message="" if ok else (error or "Delivery failed"),
            notification_id=notification.id,
            timestamp=datetime.utcnow(),
        )
        self._records[method.name] = record
        if ok:
            logger.info(f"Notification {notification.id} sent via {method.name}")
        else:
            self._last_errors[method.name] = record
            logger.warning(f"Notification {notification.id} failed via {method.name}: {record.message}")
        return ok

    async def drain(self) -> None:
        """Wait for all in-flight sends to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def delivery_records(self) -> Dict[str, DeliveryRecord]:
        return dict(self._records)

    def last_errors(self) -> Dict[str, DeliveryRecord]:
        return dict(self._last_errors)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)
