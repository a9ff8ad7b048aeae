"""Completion notifications sent over SMTP."""

import html
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from render_worker.config import Settings, get_settings

logger = logging.getLogger(__name__)

RENDER_COMPLETE_SUBJECT = "Your video is ready! - AI Reels"

_RENDER_COMPLETE_TEXT = """Hi {name},

Your video "{topic}" has finished rendering.

Watch or download it here (the link expires soon):
{video_url}
"""

_RENDER_COMPLETE_HTML = """<html>
  <body style="font-family: Arial, sans-serif; color: #111;">
    <p>Hi {name},</p>
    <p>Your video <strong>{topic}</strong> has finished rendering.</p>
    <p><a href="{video_url}" style="background:#7c3aed;color:#fff;padding:10px 18px;border-radius:6px;text-decoration:none;">Watch your video</a></p>
    <p style="color:#666;font-size:12px;">This link expires soon. You can always find the video in your library.</p>
  </body>
</html>
"""


class MailService:
    """Sends render notifications. A no-op when SMTP is not configured."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    @property
    def configured(self) -> bool:
        return bool(self.settings.smtp_host)

    def _send(self, to_address: str, subject: str, body_text: str, body_html: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.settings.smtp_from
        msg["To"] = to_address
        msg.attach(MIMEText(body_text, "plain", "utf-8"))
        msg.attach(MIMEText(body_html, "html", "utf-8"))

        with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=30) as server:
            if self.settings.smtp_use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.settings.smtp_username:
                server.login(self.settings.smtp_username, self.settings.smtp_password)
            server.sendmail(msg["From"], [to_address], msg.as_string())

    def send_render_complete_email(
        self,
        email: str,
        video_url: str,
        topic: str,
        name: str | None = None,
    ) -> bool:
        """Send the "video ready" email.

        Returns False when SMTP is not configured. SMTP errors propagate.
        """
        if not self.configured:
            logger.warning("[MailService] SMTP not configured, skipping render complete email")
            return False

        display_name = name or "there"
        body_text = _RENDER_COMPLETE_TEXT.format(name=display_name, topic=topic, video_url=video_url)
        body_html = _RENDER_COMPLETE_HTML.format(
            name=html.escape(display_name),
            topic=html.escape(topic),
            video_url=html.escape(video_url, quote=True),
        )
        self._send(email, RENDER_COMPLETE_SUBJECT, body_text, body_html)
        logger.info(f"[MailService] Render complete email sent to {email}")
        return True
