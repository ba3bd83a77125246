"""
Twilio SMS Alert Method.
"""
import aiohttp
import logging

from alert_methods import AlertMethod, register_method
from monitor_schema import Notification

logger = logging.getLogger(__name__)

# Single-segment SMS length
SMS_MAX_LENGTH = 160


@register_method
class TwilioSMSMethod(AlertMethod):
    """Sends the alert text as an SMS through the Twilio Messages API."""

    method_type = "twilio"
    display_name = "SMS (Twilio)"
    required_config_fields = ["account_sid", "auth_token", "from_number", "to_numbers"]
    optional_config_fields = {}

    TWILIO_API_BASE = "https://api.twilio.com/2010-04-01/Accounts"

    def _recipients(self) -> list[str]:
        to_numbers = self.config.get("to_numbers") or []
        if isinstance(to_numbers, str):
            to_numbers = [n.strip() for n in to_numbers.split(",") if n.strip()]
        return list(to_numbers)

    def format_sms(self, notification: Notification) -> str:
        text = self.format_message(notification)
        if len(text) > SMS_MAX_LENGTH:
            text = text[:SMS_MAX_LENGTH - 1] + "…"
        return text

    async def send(self, notification: Notification) -> tuple[bool, str]:
        recipients = self._recipients()
        if not recipients:
            return False, "No recipient numbers configured"

        url = f"{self.TWILIO_API_BASE}/{self.config['account_sid']}/Messages.json"
        auth = aiohttp.BasicAuth(self.config["account_sid"], self.config["auth_token"])
        body = self.format_sms(notification)
        failures = []

        try:
            async with aiohttp.ClientSession(auth=auth) as session:
                for number in recipients:
                    async with session.post(
                        url,
                        data={"From": self.config["from_number"], "To": number, "Body": body},
                        timeout=aiohttp.ClientTimeout(total=10),
                    ) as response:
                        if response.status not in (200, 201):
                            text = await response.text()
                            failures.append(f"{number}: status {response.status} {text[:100]}")
        except aiohttp.ClientError as e:
            logger.error(f"Twilio method {self.name}: Connection error: {e}")
            return False, f"Connection error: {e}"

        if failures:
            return False, "; ".join(failures)
        return True, ""
