"""Outbound mail over SMTP (aiosmtplib)."""

from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

import aiosmtplib
import structlog

logger = structlog.get_logger()


class MailError(Exception):
    pass


@dataclass(frozen=True)
class SmtpConfig:
    host: str
    port: int
    username: str
    password: str
    use_tls: bool = True


class SmtpClient:
    def __init__(self, config: SmtpConfig):
        self.config = config

    @property
    def sender(self) -> str:
        return self.config.username

    def build_message(
        self,
        to: str,
        subject: str,
        text_body: Optional[str] = None,
        html_body: Optional[str] = None,
    ) -> EmailMessage:
        """multipart/alternative when both bodies are present."""
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text_body or "")
        if html_body:
            message.add_alternative(html_body, subtype="html")
        return message

    async def send_multipart_mail(
        self,
        to: str,
        subject: str,
        text_body: Optional[str] = None,
        html_body: Optional[str] = None,
    ) -> None:
        message = self.build_message(to, subject, text_body, html_body)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.config.host,
                port=self.config.port,
                username=self.config.username,
                password=self.config.password,
                use_tls=self.config.use_tls,
            )
        except aiosmtplib.SMTPException as e:
            raise MailError(f"Failed to send mail to {to}: {e}") from e
        logger.info("mail.sent", to=to, subject=subject)
