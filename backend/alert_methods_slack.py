"""
Slack Incoming Webhook Alert Method.
"""
import aiohttp
import logging

from alert_methods import AlertMethod, register_method
from monitor_schema import Notification

logger = logging.getLogger(__name__)


@register_method
class SlackWebhookMethod(AlertMethod):
    """Posts the one-line alert text to a Slack incoming webhook."""

    method_type = "slack"
    display_name = "Slack Webhook"
    required_config_fields = ["webhook_url"]
    optional_config_fields = {
        "channel": "",
        "username": "OmniStream",
    }

    async def send(self, notification: Notification) -> tuple[bool, str]:
        payload = {"text": self.format_message(notification)}
        channel = self.get_config("channel")
        if channel:
            payload["channel"] = channel
        username = self.get_config("username")
        if username:
            payload["username"] = username

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.config["webhook_url"],
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=10),
                ) as response:
                    if response.status == 200:
                        return True, ""
                    text = await response.text()
                    return False, f"Failed with status {response.status}: {text[:200]}"
        except aiohttp.ClientError as e:
            logger.error(f"Slack method {self.name}: Connection error: {e}")
            return False, f"Connection error: {e}"
