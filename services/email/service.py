"""Transactional email dispatch through Resend.

Every outgoing message must use a sender address registered in the
email-sender directory; recipients are normalized and attachments are
base64-encoded before they reach the provider.

Based on the Resend Python SDK:
https://resend.com/docs/send-with-python
"""

import base64
import logging
from collections.abc import Callable
from typing import Any

import resend
from pydantic import BaseModel, Field

from services.shared.config import Settings

logger = logging.getLogger(__name__)


class EmailDispatchError(Exception):
    """Raised when a message cannot be handed to the email provider."""

    status_code = 500


class SenderNotRegisteredError(EmailDispatchError):
    """Raised when the from-address is not in the sender directory."""

    status_code = 400

    def __init__(self, email: str) -> None:
        super().__init__(f"Email sender {email} not found in database. Please add it first.")
        self.email = email


class EmailAttachment(BaseModel):
    """Binary attachment with its filename and MIME type."""

    filename: str
    content: bytes
    content_type: str = "application/pdf"


class EmailMessage(BaseModel):
    """A fully-formed outgoing email."""

    from_email: str
    to_emails: list[str]
    cc_emails: list[str] = Field(default_factory=list)
    bcc_emails: list[str] = Field(default_factory=list)
    subject: str
    content: str
    is_html: bool = False
    attachments: list[EmailAttachment] = Field(default_factory=list)


class EmailSendResult(BaseModel):
    """Provider acknowledgement for a dispatched message."""

    message_id: str | None


def normalize_email_list(value: list[str] | str | None) -> list[str]:
    """Trim addresses and drop empty entries."""
    if not value:
        return []
    if isinstance(value, str):
        value = [value]
    return [email.strip() for email in value if isinstance(email, str) and email.strip()]


class EmailService:
    """Sends email through Resend on behalf of registered senders.

    Args:
        settings: Application settings carrying the Resend API key
        is_registered_sender: Lookup that answers whether a lowercase
            address exists in the sender directory
    """

    def __init__(self, settings: Settings, is_registered_sender: Callable[[str], bool]) -> None:
        self.settings = settings
        self._is_registered_sender = is_registered_sender

    def is_available(self) -> bool:
        return bool(self.settings.resend_api_key)

    def _ensure_client(self) -> None:
        if not self.settings.resend_api_key:
            raise EmailDispatchError(
                "Resend API key is required. Set APP_RESEND_API_KEY in your environment."
            )
        resend.api_key = self.settings.resend_api_key

    @staticmethod
    def _build_params(message: EmailMessage, from_email: str) -> dict[str, Any]:
        to_list = normalize_email_list(message.to_emails)
        if not to_list:
            raise EmailDispatchError("At least one recipient email is required to send email.")

        params: dict[str, Any] = {
            "from": from_email,
            "to": to_list,
            "subject": message.subject,
        }
        if message.is_html:
            params["html"] = message.content
        else:
            params["text"] = message.content

        cc_list = normalize_email_list(message.cc_emails)
        if cc_list:
            params["cc"] = cc_list
        bcc_list = normalize_email_list(message.bcc_emails)
        if bcc_list:
            params["bcc"] = bcc_list

        if message.attachments:
            params["attachments"] = [
                {
                    "filename": attachment.filename or "attachment",
                    "content": base64.b64encode(attachment.content).decode("ascii"),
                    "content_type": attachment.content_type,
                }
                for attachment in message.attachments
            ]
        return params

    def send(self, message: EmailMessage) -> EmailSendResult:
        """Dispatch a message.

        Args:
            message: Complete email including attachments

        Returns:
            EmailSendResult with the provider message id

        Raises:
            SenderNotRegisteredError: If the sender is not registered
            EmailDispatchError: If recipients are missing, the API key is not
                configured or the provider rejects the message
        """
        if not message.from_email or not message.subject or not message.content:
            raise EmailDispatchError(
                "Missing required email parameters: fromEmail, toEmails, subject, and content are required"
            )

        from_email = message.from_email.strip().lower()
        if not self._is_registered_sender(from_email):
            logger.error(f"Email sender not registered: {from_email}")
            raise SenderNotRegisteredError(message.from_email)

        params = self._build_params(message, from_email)
        self._ensure_client()

        try:
            response = resend.Emails.send(params)
        except Exception as e:
            logger.error(f"Failed to send email via Resend: {e}")
            raise EmailDispatchError(str(e)) from e

        message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        logger.info(
            f"Sent email from {from_email} to {len(params['to'])} recipient(s), "
            f"{len(message.attachments)} attachment(s), id={message_id}"
        )
        return EmailSendResult(message_id=message_id)
