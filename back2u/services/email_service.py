"""
Back2U — Templated notification emails over SMTP.

``smtplib`` is blocking, so delivery runs in a worker thread via
``asyncio.to_thread``.  When ``SMTP_HOST`` is not configured the service is
disabled and ``send`` is a logged no-op.
"""

from __future__ import annotations

import asyncio
import html
import smtplib
from email.message import EmailMessage

import structlog

from back2u.config import get_settings

logger = structlog.get_logger("back2u.email_service")

_ICONS: dict[str, str] = {
    "match": "🎉",
    "message": "💬",
    "status_change": "📋",
}


class EmailService:
    """Render and deliver notification emails."""

    def __init__(self) -> None:
        settings = get_settings()
        self.enabled: bool = bool(settings.SMTP_HOST)
        self._host = settings.SMTP_HOST
        self._port = settings.SMTP_PORT
        self._username = settings.SMTP_USERNAME
        self._password = settings.SMTP_PASSWORD
        self._use_tls = settings.SMTP_USE_TLS
        self._sender = settings.EMAIL_FROM
        self._base_url = settings.APP_BASE_URL.rstrip("/")

    # ── Rendering ─────────────────────────────────────────────────────────

    @staticmethod
    def subject_for(notification_type: str, title: str) -> str:
        if notification_type == "match":
            return f"🎉 {title} - Back2U"
        if notification_type == "message":
            return "💬 New Message - Back2U"
        if notification_type == "status_change":
            return f"📋 {title} - Back2U"
        return "Back2U Notification"

    def render_html(
        self,
        notification_type: str,
        title: str,
        message: str,
        recipient_name: str | None,
    ) -> str:
        icon = _ICONS.get(notification_type, "📢")
        name = html.escape(recipient_name or "there")
        return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: #667eea; padding: 30px; border-radius: 10px 10px 0 0; text-align: center;">
    <h1 style="color: white; margin: 0; font-size: 28px;">Back2U</h1>
    <p style="color: rgba(255,255,255,0.9); margin: 10px 0 0 0;">Lost &amp; Found Portal</p>
  </div>
  <div style="background: #ffffff; padding: 30px; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 10px 10px;">
    <p style="font-size: 18px; margin-bottom: 20px;">Hi {name}!</p>
    <div style="background: #f8fafc; padding: 20px; border-radius: 8px; border-left: 4px solid #667eea;">
      <h2 style="margin: 0 0 10px 0; font-size: 20px;">{icon} {html.escape(title)}</h2>
      <p style="margin: 0; color: #4b5563;">{html.escape(message)}</p>
    </div>
    <div style="margin-top: 30px; text-align: center;">
      <a href="{self._base_url}/dashboard" style="display: inline-block; background: #667eea; color: white; padding: 12px 30px; text-decoration: none; border-radius: 6px; font-weight: 600;">View on Back2U</a>
    </div>
    <hr style="border: none; border-top: 1px solid #e5e7eb; margin: 30px 0;">
    <p style="font-size: 12px; color: #9ca3af; text-align: center;">
      You're receiving this email because you have notifications enabled on Back2U.<br>
      <a href="{self._base_url}/profile" style="color: #667eea;">Manage your notification preferences</a>
    </p>
  </div>
</body>
</html>
"""

    # ── Delivery ──────────────────────────────────────────────────────────

    async def send(
        self,
        to_address: str,
        notification_type: str,
        title: str,
        message: str,
        recipient_name: str | None = None,
    ) -> bool:
        """Send one notification email.  Returns ``False`` when disabled.

        SMTP errors propagate; callers decide whether they are fatal.
        """
        if not self.enabled:
            logger.info("email_disabled", to=to_address, type=notification_type)
            return False

        email = EmailMessage()
        email["From"] = self._sender
        email["To"] = to_address
        email["Subject"] = self.subject_for(notification_type, title)
        email.set_content(f"{title}\n\n{message}\n\n{self._base_url}/dashboard")
        email.add_alternative(
            self.render_html(notification_type, title, message, recipient_name),
            subtype="html",
        )

        await asyncio.to_thread(self._deliver, email)
        logger.info("email_sent", to=to_address, type=notification_type)
        return True

    def _deliver(self, email: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=30) as smtp:
            if self._use_tls:
                smtp.starttls()
            if self._username:
                smtp.login(self._username, self._password)
            smtp.send_message(email)
