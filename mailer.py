"""Outbound account emails (verification and password reset).

Sending is a single SMTP call that reports success as a bool. There is no
retry queue: callers log a failure and carry on.
"""
import logging
import smtplib
from email.message import EmailMessage
from html import escape
from typing import Optional

import config

logger = logging.getLogger(__name__)


class SmtpMailer:
    """Sends mail through the SMTP server configured in the environment."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        sender: Optional[str] = None,
        use_ssl: Optional[bool] = None,
        timeout: float = 10.0,
    ):
        self.host = host if host is not None else config.SMTP_HOST
        self.port = port if port is not None else config.SMTP_PORT
        self.user = user if user is not None else config.SMTP_USER
        self.password = password if password is not None else config.SMTP_PASSWORD
        self.sender = sender if sender is not None else config.SMTP_FROM
        self.use_ssl = use_ssl if use_ssl is not None else config.SMTP_SECURE
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> bool:
        if not self.configured:
            logger.error("SMTP is not configured; email to %s was not sent", to)
            return False

        message = EmailMessage()
        message["From"] = f"Budget Tracker <{self.sender}>"
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text)
        if html:
            message.add_alternative(html, subtype="html")

        try:
            if self.use_ssl:
                smtp = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
            else:
                smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            with smtp:
                if not self.use_ssl:
                    smtp.starttls()
                smtp.login(self.user, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError):
            logger.exception("Sending email to %s failed", to)
            return False

        logger.info("Email '%s' sent to %s", subject, to)
        return True


def _link(path: str, token: str) -> str:
    return f"{config.APP_BASE_URL}{path}?token={token}"


def send_verification_email(mailer, to: str, name: str, token: str) -> bool:
    url = _link("/verify-email", token)
    subject = "Verify your email address"
    text = (
        f"Hello {name},\n\n"
        f"Please confirm your email address by opening the link below:\n{url}\n\n"
        "If you did not create an account, you can ignore this email.\n\n"
        "Thanks,\nThe Budget Tracker team\n"
    )
    html = (
        f"<p>Hello {escape(name)},</p>"
        "<p>Please confirm your email address by opening the link below:</p>"
        f'<p><a href="{escape(url)}">{escape(url)}</a></p>'
        "<p>If you did not create an account, you can ignore this email.</p>"
        "<p>Thanks,<br>The Budget Tracker team</p>"
    )
    return mailer.send(to, subject, text, html)


def send_password_reset_email(mailer, to: str, name: str, token: str) -> bool:
    url = _link("/reset-password", token)
    hours = config.RESET_TOKEN_TTL_HOURS
    subject = "Password reset request"
    text = (
        f"Hello {name},\n\n"
        f"We received a request to reset your password. Use the link below:\n{url}\n\n"
        f"The link is valid for {hours} hours.\n"
        "If you did not ask for this, you can ignore this email.\n\n"
        "Thanks,\nThe Budget Tracker team\n"
    )
    html = (
        f"<p>Hello {escape(name)},</p>"
        "<p>We received a request to reset your password. Use the link below:</p>"
        f'<p><a href="{escape(url)}">{escape(url)}</a></p>'
        f"<p>The link is valid for {hours} hours.</p>"
        "<p>If you did not ask for this, you can ignore this email.</p>"
        "<p>Thanks,<br>The Budget Tracker team</p>"
    )
    return mailer.send(to, subject, text, html)
