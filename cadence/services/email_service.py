from __future__ import annotations

import logging
import uuid
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Protocol

import aiosmtplib

from cadence.core.settings import Settings

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    async def send(self, *, to: str, subject: str, html: str, from_email: str | None = None) -> str: ...


class SmtpEmailSender:
    """Outbound email through an SMTP relay.

    Any provider rejection raises; the email worker relies on that to schedule a retry.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: str | None,
        password: str | None,
        default_from: str,
        use_tls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._default_from = default_from
        self._use_tls = use_tls
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> SmtpEmailSender:
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            default_from=settings.smtp_from_email,
            use_tls=settings.smtp_use_tls,
            timeout=settings.smtp_timeout_sec,
        )

    def _build_message(self, *, to: str, subject: str, html: str, from_email: str | None) -> EmailMessage:
        message = EmailMessage()
        message["From"] = from_email or self._default_from
        message["To"] = to
        message["Subject"] = subject
        message["Message-ID"] = make_msgid(idstring=uuid.uuid4().hex[:12])
        message.set_content("This message requires an HTML capable email client.")
        message.add_alternative(html, subtype="html")
        return message

    async def send(self, *, to: str, subject: str, html: str, from_email: str | None = None) -> str:
        message = self._build_message(to=to, subject=subject, html=html, from_email=from_email)
        await aiosmtplib.send(
            message,
            hostname=self._host,
            port=self._port,
            username=self._username,
            password=self._password,
            start_tls=self._use_tls,
            timeout=self._timeout,
        )
        logger.info("Email sent to=%s message_id=%s", to, message["Message-ID"])
        return str(message["Message-ID"])
