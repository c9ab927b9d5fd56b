# File: services/email_service.py

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Optional

import aiosmtplib

from exceptions import ExternalServiceError
from schemas import DeliveryResult

logger = logging.getLogger(__name__)

class MailDelivery:
    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> DeliveryResult:
        raise NotImplementedError

class SMTPMailDelivery(MailDelivery):
    """Mail delivery over async SMTP"""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_email: str,
        from_name: str,
        use_tls: bool = True,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email
        self.from_name = from_name
        self.use_tls = use_tls
        self.timeout = timeout

    def build_message(self, to: str, subject: str, html_body: str, text_body: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = formataddr((self.from_name, self.from_email))
        message["To"] = to
        message["Message-ID"] = make_msgid(domain=self.from_email.split("@")[-1])
        # Plain text first so clients prefer the HTML part
        message.attach(MIMEText(text_body, "plain", "utf-8"))
        message.attach(MIMEText(html_body, "html", "utf-8"))
        return message

    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> DeliveryResult:
        message = self.build_message(to, subject, html_body, text_body)
        try:
            refused, response = await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                start_tls=self.use_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"Email sending error to {to}: {e}")
            raise ExternalServiceError("Mail delivery failed.") from e

        if refused:
            logger.warning(f"SMTP server refused recipient(s) {list(refused)}: {response}")
            return DeliveryResult(delivered=False)

        logger.info(f"Email sent successfully to {to}")
        return DeliveryResult(delivered=True, provider_message_id=message["Message-ID"])

class NullMailDelivery(MailDelivery):
    """Stands in when SMTP is not configured or mail is mocked: logs and delivers nothing."""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or "mail delivery disabled"

    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> DeliveryResult:
        logger.info(f"📧 [{self.reason}] Would send to {to}: {subject!r}")
        return DeliveryResult(delivered=False)
