"""
auth/notify.py -- Outbound notifications for the login and reset flows.

The auth flows only need two messages delivered to the account's e-mail
address: a login OTP and a password reset link. Notifier is the seam; the
routes read the instance from app.state.notifier so tests install a fake.

SmtpNotifier sends through smtplib. It raises NotConfiguredError when no
SMTP host is set (an operator problem, surfaced as 500) and
NotificationError when the server rejects or drops the message. It never
swallows a failure -- the OTP issuer relies on the exception to roll back
the code it just stored.

Codes and links are never written to the log. Addresses are masked.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from auth.errors import NotConfiguredError, NotificationError
from core.config import Settings

logger = logging.getLogger("folioadmin.notify")


def mask_email(address: str) -> str:
    """Mask an e-mail address for display and logs: 'jane@example.com' -> 'ja***@example.com'."""
    if "@" not in address:
        return "***"
    local, domain = address.split("@", 1)
    return f"{local[:2]}***@{domain}"


class Notifier(Protocol):
    @property
    def is_configured(self) -> bool: ...

    def send_login_otp(self, to: str, code: str, ttl_minutes: int) -> None: ...

    def send_password_reset(self, to: str, reset_url: str, ttl_minutes: int) -> None: ...


class SmtpNotifier:
    """SMTP delivery for the two auth messages."""

    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        from_email: str = "",
        from_name: str = "Portfolio Admin",
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpNotifier":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.mail_from,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def send_login_otp(self, to: str, code: str, ttl_minutes: int) -> None:
        text_body = (
            "You requested to log in to your admin account.\n\n"
            f"Your verification code is: {code}\n\n"
            f"This code will expire in {ttl_minutes} minutes.\n"
            "If you didn't request this, please ignore this email."
        )
        html_body = (
            "<h2>Login Verification Code</h2>"
            "<p>You requested to log in to your admin account.</p>"
            f"<p style=\"font-size:32px;font-weight:bold;letter-spacing:8px\">{code}</p>"
            f"<p>This code will expire in {ttl_minutes} minutes.</p>"
            "<p>If you didn't request this, please ignore this email.</p>"
        )
        self._send(to, "Login OTP - Portfolio Admin", html_body, text_body)

    def send_password_reset(self, to: str, reset_url: str, ttl_minutes: int) -> None:
        text_body = (
            "You requested a password reset for your admin account.\n\n"
            f"Open this link to choose a new password:\n{reset_url}\n\n"
            f"This link will expire in {ttl_minutes} minutes.\n"
            "If you didn't request this, please ignore this email."
        )
        html_body = (
            "<h2>Password Reset Request</h2>"
            "<p>You requested a password reset for your admin account.</p>"
            f"<p><a href=\"{reset_url}\">Reset Password</a></p>"
            f"<p>Or copy and paste this link: {reset_url}</p>"
            f"<p>This link will expire in {ttl_minutes} minutes.</p>"
            "<p>If you didn't request this, please ignore this email.</p>"
        )
        self._send(to, "Password Reset Request - Portfolio Admin", html_body, text_body)

    def _send(self, to: str, subject: str, html_body: str, text_body: str) -> None:
        if not self.is_configured:
            raise NotConfiguredError("Email service is not configured. Please contact the administrator.")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to, msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=30) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Mail delivery to %s failed: %s", mask_email(to), exc)
            raise NotificationError("Failed to send email. Please try again.") from exc

        logger.info("Mail sent to %s (%s)", mask_email(to), subject)
