"""
Push Notification Alert Methods.

Pushover and ntfy, both plain HTTP APIs.
"""
import aiohttp
import logging

from alert_methods import AlertMethod, register_method, notification_title
from monitor_schema import Notification

logger = logging.getLogger(__name__)


@register_method
class PushoverMethod(AlertMethod):
    """Sends alerts through the Pushover messages API."""

    method_type = "pushover"
    display_name = "Pushover"
    required_config_fields = ["app_token", "user_key"]
    optional_config_fields = {
        "device": "",
    }

    PUSHOVER_API_URL = "https://api.pushover.net/1/messages.json"

    # Pushover priorities: -1 quiet, 0 normal, 1 high
    PRIORITIES = {
        "info": -1,
        "warn": 0,
        "error": 1,
    }

    async def send(self, notification: Notification) -> tuple[bool, str]:
        data = {
            "token": self.config["app_token"],
            "user": self.config["user_key"],
            "title": notification_title(notification),
            "message": self.format_message(notification),
            "priority": str(self.PRIORITIES.get(notification.severity, 0)),
            "timestamp": str(int(notification.timestamp.timestamp())),
        }
        device = self.get_config("device")
        if device:
            data["device"] = device

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.PUSHOVER_API_URL,
                    data=data,
                    timeout=aiohttp.ClientTimeout(total=10),
                ) as response:
                    if response.status == 200:
                        return True, ""
                    text = await response.text()
                    return False, f"Failed with status {response.status}: {text[:200]}"
        except aiohttp.ClientError as e:
            logger.error(f"Pushover method {self.name}: Connection error: {e}")
            return False, f"Connection error: {e}"


@register_method
class NtfyMethod(AlertMethod):
    """Publishes alerts to an ntfy topic."""

    method_type = "ntfy"
    display_name = "ntfy"
    required_config_fields = ["topic"]
    optional_config_fields = {
        "server_url": "https://ntfy.sh",
        "access_token": "",
    }

    PRIORITIES = {
        "info": "low",
        "warn": "default",
        "error": "high",
    }

    TAGS = {
        "info": "information_source",
        "warn": "warning",
        "error": "x",
    }

    async def send(self, notification: Notification) -> tuple[bool, str]:
        server_url = str(self.get_config("server_url")).rstrip("/")
        url = f"{server_url}/{self.config['topic']}"
        headers = {
            "Title": notification_title(notification),
            "Priority": self.PRIORITIES.get(notification.severity, "default"),
            "Tags": self.TAGS.get(notification.severity, "bell"),
        }
        token = self.get_config("access_token")
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    data=notification.message.encode("utf-8"),
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=10),
                ) as response:
                    if response.status == 200:
                        return True, ""
                    text = await response.text()
                    return False, f"Failed with status {response.status}: {text[:200]}"
        except aiohttp.ClientError as e:
            logger.error(f"ntfy method {self.name}: Connection error: {e}")
            return False, f"Connection error: {e}"
