"""
notify/mailer.py -- Transactional email for the credential lifecycle.

Four messages: the one-time code, the reset link, the "password changed"
confirmation, and the welcome mail carrying a temporary password.

Every send raises NotificationError when the transport fails. Deciding which
failures matter is the orchestrator's job: confirmations are swallowed there,
codes, reset links and temporary passwords propagate.

When SMTP_HOST is empty the notifier runs in dev mode and writes a redacted
line to the log instead of sending. The secret itself is never logged.

Layer rule: may import auth.errors; no other auth/ or api/ imports.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from auth.errors import NotificationError
from core.config import Settings

logger = logging.getLogger("gatehouse.notify")


class Notifier(Protocol):
    def send_otp(self, email: str, code: str, name: str) -> None: ...

    def send_password_reset(self, email: str, token: str, name: str) -> None: ...

    def send_password_changed(self, email: str, name: str) -> None: ...

    def send_temporary_password(self, email: str, name: str, password: str, issued_by: str) -> None: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailNotifier:
    """SMTP implementation of Notifier.

    Usage:
        notifier = EmailNotifier.from_settings(get_settings())
        notifier.send_otp("a@example.com", "123456", "Ada")
    """

    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        from_email: str = "no-reply@gatehouse.local",
        from_name: str = "Gatehouse",
        frontend_url: str = "http://localhost:3001",
        otp_ttl_minutes: int = 4,
        reset_ttl_minutes: int = 30,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email
        self.from_name = from_name
        self.frontend_url = frontend_url.rstrip("/")
        self.otp_ttl_minutes = otp_ttl_minutes
        self.reset_ttl_minutes = reset_ttl_minutes

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailNotifier":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.mail_from,
            from_name=settings.mail_from_name,
            frontend_url=settings.frontend_url,
            otp_ttl_minutes=settings.otp_ttl_seconds // 60,
            reset_ttl_minutes=settings.reset_token_ttl_seconds // 60,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def send_otp(self, email: str, code: str, name: str) -> None:
        self._send(
            email,
            "Your sign-in code",
            f"Hello {name},\n\n"
            f"Your sign-in code is {code}. It expires in {self.otp_ttl_minutes} minutes "
            "and can only be used once.\n\n"
            "If you did not try to sign in, you can ignore this message.",
        )

    def send_password_reset(self, email: str, token: str, name: str) -> None:
        link = f"{self.frontend_url}/reset-password?token={token}"
        self._send(
            email,
            "Reset your password",
            f"Hello {name},\n\n"
            f"Use the link below to choose a new password. It expires in {self.reset_ttl_minutes} minutes.\n\n"
            f"{link}\n\n"
            "If you did not ask for a reset, you can ignore this message.",
        )

    def send_password_changed(self, email: str, name: str) -> None:
        self._send(
            email,
            "Your password was changed",
            f"Hello {name},\n\n"
            "The password for your account was just changed and every session was signed out.\n\n"
            "If this was not you, reset your password immediately.",
        )

    def send_temporary_password(self, email: str, name: str, password: str, issued_by: str) -> None:
        self._send(
            email,
            "Your account has been created",
            f"Hello {name},\n\n"
            f"{issued_by} created an account for you.\n\n"
            f"Email: {email}\n"
            f"Temporary password: {password}\n\n"
            f"Sign in at {self.frontend_url}/login. You will be asked to choose a new password.",
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _send(self, to_email: str, subject: str, text_body: str) -> None:
        if not self.is_configured:
            logger.info("Email (dev mode, not sent) to=%s subject=%r", redact_email(to_email), subject)
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=30) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email send failed to=%s subject=%r: %s", redact_email(to_email), subject, exc)
            raise NotificationError() from exc
        logger.info("Email sent to=%s subject=%r", redact_email(to_email), subject)
