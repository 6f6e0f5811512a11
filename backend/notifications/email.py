"""
Email delivery for supplier purchase orders and member messages.

SendGrid when an API key is configured; otherwise emails are logged and
dropped so local and test runs never reach the network.
"""

from abc import ABC, abstractmethod

import sendgrid
import structlog
from sendgrid.helpers.mail import Mail

from core.config import get_settings

logger = structlog.get_logger()


class EmailDeliveryError(Exception):
    """Raised when the mail provider rejects a message."""


class EmailSender(ABC):
    @abstractmethod
    async def send(self, to_email: str, subject: str, body: str) -> None:
        """Deliver a plain-text email or raise EmailDeliveryError."""
        ...


class SendGridEmailSender(EmailSender):
    def __init__(self, api_key: str, from_email: str):
        self.client = sendgrid.SendGridAPIClient(api_key=api_key)
        self.from_email = from_email

    async def send(self, to_email: str, subject: str, body: str) -> None:
        email = Mail(
            from_email=self.from_email,
            to_emails=to_email,
            subject=subject,
            plain_text_content=body,
        )
        try:
            response = self.client.send(email)
        except Exception as exc:  # noqa: BLE001
            raise EmailDeliveryError(str(exc)) from exc
        if response.status_code not in (200, 201, 202):
            raise EmailDeliveryError(f"SendGrid returned {response.status_code}")
        logger.info("email.sent", to=to_email, subject=subject)


class LoggingEmailSender(EmailSender):
    """Used when no SendGrid key is configured."""

    async def send(self, to_email: str, subject: str, body: str) -> None:
        logger.info("email.skipped_no_provider", to=to_email, subject=subject)


def get_email_sender() -> EmailSender:
    settings = get_settings()
    if settings.sendgrid_api_key:
        return SendGridEmailSender(settings.sendgrid_api_key, settings.notification_from_email)
    return LoggingEmailSender()
