# mailer.py — Email transports used by the outbox dispatcher
"""
SMTPTransport delivers through the configured mail server; LogTransport is
used when SMTP_HOST is not set and only writes the message to the log.
Request handlers never call a transport directly: they enqueue into the
outbox (see outbox.py) and the dispatcher delivers.
"""
import os
import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

logger = logging.getLogger("workhub.mailer")

SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_STARTTLS = os.getenv("SMTP_STARTTLS", "true").lower() == "true"
SMTP_TIMEOUT_SECONDS = float(os.getenv("SMTP_TIMEOUT_SECONDS", "30"))
MAIL_FROM = os.getenv("MAIL_FROM", "Project Manager <no-reply@workhub.local>")


@dataclass
class OutgoingMail:
    to: str
    subject: str
    html: str


class MailTransport(Protocol):
    async def send(self, mail: OutgoingMail) -> None: ...


class SMTPTransport:
    def __init__(self, host: str, port: int, username: str = "", password: str = "",
                 starttls: bool = True, sender: str = MAIL_FROM):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.starttls = starttls
        self.sender = sender

    def _build(self, mail: OutgoingMail) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = mail.to
        message["Subject"] = mail.subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(mail.html, subtype="html")
        return message

    def _send_sync(self, mail: OutgoingMail) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(self._build(mail))

    async def send(self, mail: OutgoingMail) -> None:
        # smtplib blocks; keep it off the event loop
        await asyncio.to_thread(self._send_sync, mail)


class LogTransport:
    """Writes mail to the log instead of sending it"""

    async def send(self, mail: OutgoingMail) -> None:
        logger.info(f"Mail (not sent, SMTP_HOST unset) to={mail.to} subject={mail.subject!r}")


def get_transport() -> MailTransport:
    if not SMTP_HOST:
        return LogTransport()
    return SMTPTransport(
        host=SMTP_HOST,
        port=SMTP_PORT,
        username=SMTP_USER,
        password=SMTP_PASSWORD,
        starttls=SMTP_STARTTLS,
    )
