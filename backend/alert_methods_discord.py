"""
Discord alerts.

One embed per notification, colored by severity, posted to a channel
webhook.
"""
import aiohttp
import logging
from typing import Dict, Any

from alert_methods import AlertMethod, register_method, notification_title
from monitor_schema import Notification

logger = logging.getLogger(__name__)


@register_method
class DiscordWebhookMethod(AlertMethod):
    """Posts an embed per alert to a Discord channel webhook."""

    method_type = "discord"
    display_name = "Discord"
    required_config_fields = ["webhook_url"]
    optional_config_fields = {
        "username": "OmniStream",
        "avatar_url": "",
    }

    EMBED_COLORS = {
        "info": 0x3B82F6,
        "warn": 0xF59E0B,
        "error": 0xEF4444,
    }

    def build_payload(self, notification: Notification) -> Dict[str, Any]:
        embed = {
            "title": f"{self.get_emoji(notification.severity)} {notification_title(notification)}",
            "description": notification.message,
            "color": self.EMBED_COLORS.get(notification.severity, 0x808080),
            "fields": [
                {"name": "Server", "value": notification.server_name or "-", "inline": True},
                {"name": "Severity", "value": notification.severity, "inline": True},
            ],
            "timestamp": notification.timestamp.isoformat(),
            "footer": {"text": notification.id},
        }
        payload: Dict[str, Any] = {"embeds": [embed]}

        for key in ("username", "avatar_url"):
            value = self.get_config(key)
            if value:
                payload[key] = value
        return payload

    async def send(self, notification: Notification) -> tuple[bool, str]:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.config["webhook_url"],
                    json=self.build_payload(notification),
                    timeout=aiohttp.ClientTimeout(total=10),
                ) as response:
                    # Webhooks answer 204 unless ?wait=true is set
                    if response.status in (200, 204):
                        return True, ""
                    if response.status == 429:
                        return False, f"Rate limited by Discord (retry after {response.headers.get('Retry-After', '?')}s)"
                    body = await response.text()
                    return False, f"Discord returned {response.status}: {body[:200]}"
        except aiohttp.ClientError as e:
            logger.error(f"Discord channel {self.name}: request failed: {e}")
            return False, f"Connection error: {e}"
