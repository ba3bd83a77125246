"""
Generic Webhook Alert Method.

POSTs the notification as a JSON document to any HTTP endpoint.
"""
import aiohttp
import logging
from typing import Any, Dict

from alert_methods import AlertMethod, register_method
from monitor_schema import Notification

logger = logging.getLogger(__name__)


@register_method
class WebhookMethod(AlertMethod):
    """Structured JSON delivery for home-automation hubs, n8n, etc."""

    method_type = "webhook"
    display_name = "Generic Webhook"
    required_config_fields = ["url"]
    optional_config_fields = {
        "method": "POST",
        "headers": {},
    }

    def build_payload(self, notification: Notification) -> Dict[str, Any]:
        payload = notification.to_dict()
        payload["text"] = self.format_message(notification)
        return payload

    async def send(self, notification: Notification) -> tuple[bool, str]:
        method = str(self.get_config("method") or "POST").upper()
        headers = self.get_config("headers") or {}
        if not isinstance(headers, dict):
            return False, "headers must be a JSON object"

        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    self.config["url"],
                    json=self.build_payload(notification),
                    headers={str(k): str(v) for k, v in headers.items()},
                    timeout=aiohttp.ClientTimeout(total=10),
                ) as response:
                    if 200 <= response.status < 300:
                        return True, ""
                    text = await response.text()
                    return False, f"Failed with status {response.status}: {text[:200]}"
        except aiohttp.ClientError as e:
            logger.error(f"Webhook method {self.name}: Connection error: {e}")
            return False, f"Connection error: {e}"
