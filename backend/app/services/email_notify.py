"""
Outbound email via SMTP (Gmail or any relay).
Set SMTP_USER, SMTP_PASSWORD (and optionally NOTIFY_FROM) in .env. With Gmail use an App Password.
"""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from app.config import settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, to: str, subject: str, body: str) -> bool:
        """Return True if delivered, False if skipped or failed. Must not raise."""
        ...


class SmtpNotifier:
    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        from_addr: str | None = None,
    ):
        self.host = host or settings.smtp_host
        self.port = port or settings.smtp_port
        self.user = (user if user is not None else settings.smtp_user or "").strip()
        self.password = (password if password is not None else settings.smtp_password or "").strip()
        self.from_addr = (from_addr if from_addr is not None else settings.notify_from or "").strip()

    @property
    def configured(self) -> bool:
        return bool(self.user and self.password)

    def _from_address(self) -> str:
        if self.from_addr:
            return self.from_addr
        if self.user:
            return f"Tablebook <{self.user}>"
        return "Tablebook <noreply@localhost>"

    def send(self, to: str, subject: str, body: str) -> bool:
        to = (to or "").strip()
        if not to:
            return False
        if not self.configured:
            logger.debug("SMTP_USER or SMTP_PASSWORD not set; skipping email to %s", to)
            return False
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._from_address()
        msg["To"] = to
        msg.attach(MIMEText(body, "plain"))
        msg.attach(MIMEText(f"<pre style='font-family:sans-serif'>{body}</pre>", "html"))
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                server.starttls()
                server.login(self.user, self.password)
                server.sendmail(self.user, [to], msg.as_string())
            logger.info("Email sent to %s: %s", to, subject)
            return True
        except Exception as e:
            logger.exception("Failed to send email to %s: %s", to, e)
            return False
