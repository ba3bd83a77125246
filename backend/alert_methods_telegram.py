"""
Telegram alerts through the Bot API sendMessage call, formatted as HTML.
"""
import aiohttp
import logging
from html import escape

from alert_methods import AlertMethod, register_method, notification_title
from monitor_schema import Notification

logger = logging.getLogger(__name__)


@register_method
class TelegramBotMethod(AlertMethod):
    """Messages a chat (user, group or channel) through a Telegram bot."""

    method_type = "telegram"
    display_name = "Telegram"
    required_config_fields = ["bot_token", "chat_id"]
    optional_config_fields = {
        "disable_notification": False,
    }

    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def format_html(self, notification: Notification) -> str:
        sent_at = notification.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC")
        return (
            f"{self.get_emoji(notification.severity)} "
            f"<b>{escape(notification_title(notification), quote=False)}</b>\n\n"
            f"{escape(notification.message, quote=False)}\n\n"
            f"<i>{sent_at}</i>"
        )

    async def send(self, notification: Notification) -> tuple[bool, str]:
        payload = {
            "chat_id": self.config["chat_id"],
            "text": self.format_html(notification),
            "parse_mode": "HTML",
            # Silent delivery for informational alerts, or always when configured
            "disable_notification": bool(self.get_config("disable_notification"))
            or notification.severity == "info",
            "disable_web_page_preview": True,
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.API_URL.format(token=self.config["bot_token"]),
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=10),
                ) as response:
                    result = await response.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as e:
            # Never log the URL: it contains the bot token
            logger.error(f"Telegram channel {self.name}: request failed: {type(e).__name__}")
            return False, f"Connection error: {type(e).__name__}"

        if not isinstance(result, dict):
            result = {}
        if response.status == 200 and result.get("ok"):
            return True, ""
        if response.status == 429:
            retry_after = (result.get("parameters") or {}).get("retry_after", "?")
            return False, f"Rate limited by Telegram (retry after {retry_after}s)"
        return False, f"Telegram returned {response.status}: {result.get('description', 'unknown error')}"
