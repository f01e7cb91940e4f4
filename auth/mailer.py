"""
auth/mailer.py -- Transactional email over SMTP.

Contract: send(to, subject, html_body) -> bool. True means the message was
handed to the SMTP server (or logged, in dev mode); False means delivery
failed and the caller decides whether that is fatal. Forgot-password treats
False as a hard error, the reset confirmation ignores it.

Dev mode: with no SMTP_HOST configured, messages are written to the log
instead of being sent, and send() returns True.

Email addresses are redacted in every log line.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("reelvault.auth.mailer")


class Mailer(Protocol):
    def send(self, to: str, subject: str, html_body: str) -> bool: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpMailer:
    """SMTP implementation of the Mailer contract (STARTTLS or implicit TLS)."""

    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        from_email: str = "",
        from_name: str = "ReelVault",
        timeout: float = 30,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpMailer":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from,
            from_name=settings.email_from_name,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _build_message(self, to: str, subject: str, html_body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        msg.attach(MIMEText(html_body, "html"))
        return msg

    def send(self, to: str, subject: str, html_body: str) -> bool:
        if not self.is_configured:
            logger.info("Email (dev mode, not sent) to=%s subject=%r", redact_email(to), subject)
            return True

        msg = self._build_message(to, subject, html_body)
        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, [to], msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=self.timeout) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, [to], msg.as_string())
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("SMTP authentication failed host=%s user=%s: %s", self.smtp_host, self.smtp_user, exc)
            return False
        except smtplib.SMTPRecipientsRefused:
            logger.error("SMTP recipient refused to=%s", redact_email(to))
            return False
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error(
                "Email delivery failed to=%s host=%s:%s (%s: %s)",
                redact_email(to),
                self.smtp_host,
                self.smtp_port,
                type(exc).__name__,
                exc,
            )
            return False

        logger.info("Email sent to=%s subject=%r", redact_email(to), subject)
        return True
