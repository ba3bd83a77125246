"""
SMTP Email Alert Method.

Sends notifications via email using the shared SMTP settings. Each email
channel only configures its recipients.
"""
import asyncio
import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from html import escape

from alert_methods import AlertMethod, SEVERITY_LABELS, register_method, notification_title
from config import get_settings
from monitor_schema import Notification

logger = logging.getLogger(__name__)


@register_method
class SMTPMethod(AlertMethod):
    """Sends alerts via SMTP email using shared SMTP settings."""

    method_type = "smtp"
    display_name = "Email"
    required_config_fields = ["to_emails"]
    optional_config_fields = {}

    SEVERITY_COLORS = {
        "info": "#3B82F6",
        "warn": "#F59E0B",
        "error": "#EF4444",
    }

    def _recipients(self) -> list[str]:
        to_emails = self.config.get("to_emails") or []
        if isinstance(to_emails, str):
            to_emails = [e.strip() for e in to_emails.split(",") if e.strip()]
        return list(to_emails)

    def _build_plain_message(self, notification: Notification) -> str:
        label = SEVERITY_LABELS.get(notification.severity, "[NOTIFICATION]")
        return "\n".join([
            f"{label} {notification_title(notification)}",
            "",
            notification.message,
            "",
            "-" * 40,
            f"Alert: {notification.id}",
            f"Time: {notification.timestamp.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        ])

    def _build_html_message(self, notification: Notification) -> str:
        color = self.SEVERITY_COLORS.get(notification.severity, "#808080")
        return f"""
        <html>
        <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;">
            <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                <div style="background-color: {color}; color: white; padding: 15px; border-radius: 8px 8px 0 0;">
                    <h2 style="margin: 0; font-size: 18px;">
                        {self.get_emoji(notification.severity)} {escape(notification_title(notification))}
                    </h2>
                </div>
                <div style="background-color: #f8f9fa; padding: 20px; border: 1px solid #e9ecef; border-top: none;">
                    <div style="color: #333; line-height: 1.6;">{escape(notification.message)}</div>
                    <div style="font-size: 12px; color: #999; margin-top: 15px;">
                        {escape(notification.id)} &middot; {notification.timestamp.strftime('%Y-%m-%d %H:%M:%S UTC')}
                    </div>
                </div>
            </div>
        </body>
        </html>
        """

    def build_email(self, notification: Notification, from_name: str, from_email: str,
                    recipients: list[str]) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"{SEVERITY_LABELS.get(notification.severity, '')} {notification_title(notification)}"
        msg["From"] = f"{from_name} <{from_email}>"
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(self._build_plain_message(notification), "plain"))
        msg.attach(MIMEText(self._build_html_message(notification), "html"))
        return msg

    def _deliver(self, msg: MIMEMultipart, recipients: list[str]) -> None:
        settings = get_settings()
        if settings.smtp_use_ssl:
            server = smtplib.SMTP_SSL(
                settings.smtp_host, settings.smtp_port,
                context=ssl.create_default_context(), timeout=10,
            )
        else:
            server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10)

        try:
            if settings.smtp_use_tls and not settings.smtp_use_ssl:
                server.starttls(context=ssl.create_default_context())
            if settings.smtp_user and settings.smtp_password:
                server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(settings.smtp_from_email, recipients, msg.as_string())
        finally:
            server.quit()

    async def send(self, notification: Notification) -> tuple[bool, str]:
        """Send an email alert via SMTP using shared settings."""
        settings = get_settings()
        if not settings.is_smtp_configured():
            return False, "Shared SMTP settings not configured"

        recipients = self._recipients()
        if not recipients:
            return False, "No recipients configured"

        msg = self.build_email(notification, settings.smtp_from_name, settings.smtp_from_email, recipients)

        try:
            # smtplib blocks; keep it off the event loop
            await asyncio.to_thread(self._deliver, msg, recipients)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP method {self.name}: Authentication failed: {e}")
            return False, f"Authentication failed: {e}"
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP method {self.name}: SMTP error: {e}")
            return False, f"SMTP error: {e}"

        logger.debug(f"SMTP method {self.name}: Email sent to {len(recipients)} recipient(s)")
        return True, ""
