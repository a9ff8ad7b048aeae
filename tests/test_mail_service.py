"""Tests for completion emails."""

from unittest.mock import patch

from render_worker.config import Settings
from render_worker.services.mail_service import RENDER_COMPLETE_SUBJECT, MailService


class TestMailService:
    """Tests for MailService."""

    def test_unconfigured_is_noop(self):
        """Test that no SMTP host means nothing is sent."""
        service = MailService(Settings(smtp_host=""))
        with patch("render_worker.services.mail_service.smtplib.SMTP") as smtp:
            assert service.send_render_complete_email("a@example.com", "https://v", "Volcanoes") is False
        smtp.assert_not_called()

    def test_sends_with_tls_and_login(self):
        """Test the SMTP session for a configured relay."""
        service = MailService(Settings(
            smtp_host="smtp.example.com",
            smtp_port=2525,
            smtp_username="mailer",
            smtp_password="secret",
            smtp_from="Reels <noreply@example.com>",
        ))
        with patch("render_worker.services.mail_service.smtplib.SMTP") as smtp:
            sent = service.send_render_complete_email("a@example.com", "https://v?x=1&y=2", "Rock & Roll", "Ada")

        assert sent is True
        smtp.assert_called_once_with("smtp.example.com", 2525, timeout=30)
        server = smtp.return_value.__enter__.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "secret")

        from_addr, to_addrs, message = server.sendmail.call_args.args
        assert from_addr == "Reels <noreply@example.com>"
        assert to_addrs == ["a@example.com"]
        assert f"Subject: {RENDER_COMPLETE_SUBJECT}" in message

    def test_html_body_is_escaped(self):
        """Test that the topic is escaped in the HTML part."""
        service = MailService(Settings(smtp_host="smtp.example.com", smtp_use_tls=False))
        with patch.object(MailService, "_send") as send:
            service.send_render_complete_email("a@example.com", "https://v", "<b>Volcanoes</b>")

        _, _, body_text, body_html = send.call_args.args
        assert "Hi there," in body_text
        assert "<b>Volcanoes</b>" in body_text
        assert "&lt;b&gt;Volcanoes&lt;/b&gt;" in body_html
