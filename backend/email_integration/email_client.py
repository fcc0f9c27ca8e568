"""
Email Client - Resend Provider Implementation

Thin wrapper around the Resend SDK used for member notifications.
When EMAIL_API_KEY or EMAIL_FROM_ADDRESS is missing the client reports
itself as not configured and every send returns a SKIPPED result, so local
development and the scheduled jobs run without an email account.
"""

import logging
import uuid
from typing import Optional, Dict, Any, List
from dataclasses import dataclass
from enum import Enum

import resend

from config import get_settings

logger = logging.getLogger(__name__)


class EmailStatus(str, Enum):
    """Email delivery status"""
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class EmailResult:
    """Result of an email operation"""
    success: bool
    message_id: Optional[str] = None
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    status: EmailStatus = EmailStatus.FAILED


@dataclass
class EmailMessage:
    """Represents an email message to send"""
    to: str
    subject: str
    body: str
    from_address: Optional[str] = None
    reply_to: Optional[str] = None
    html: bool = True
    template_id: Optional[str] = None
    tags: Optional[Dict[str, str]] = None


class EmailClient:
    """
    Email Client - Resend Provider Implementation.

    Usage:
        client = EmailClient()
        result = client.send_email(EmailMessage(
            to="member@example.org",
            subject="Hello",
            body="<p>Welcome!</p>"
        ))
    """

    provider = "resend"

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_address: Optional[str] = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.EMAIL_API_KEY
        self.from_address = from_address if from_address is not None else settings.EMAIL_FROM_ADDRESS

        if self.api_key:
            resend.api_key = self.api_key
            logger.info(f"Email client initialized (provider: {self.provider})")
        else:
            logger.warning("Email client not initialized - EMAIL_API_KEY not set")

    def is_configured(self) -> bool:
        """Check if email client is properly configured."""
        return bool(self.api_key and self.from_address)

    def send_email(self, message: EmailMessage) -> EmailResult:
        """
        Send an email via Resend.

        Args:
            message: EmailMessage to send

        Returns:
            EmailResult with send status
        """
        internal_id = str(uuid.uuid4())

        if not self.is_configured():
            logger.info(f"Email not configured, skipping email to {message.to} (template: {message.template_id})")
            return EmailResult(
                success=False,
                message_id=internal_id,
                error="Email client not configured. Check EMAIL_API_KEY and EMAIL_FROM_ADDRESS.",
                status=EmailStatus.SKIPPED
            )

        params: Dict[str, Any] = {
            "from": message.from_address or self.from_address,
            "to": [message.to],
            "subject": message.subject,
        }
        if message.html:
            params["html"] = message.body
        else:
            params["text"] = message.body
        if message.reply_to:
            params["reply_to"] = [message.reply_to]
        if message.tags:
            params["tags"] = [{"name": k, "value": v} for k, v in message.tags.items()]

        try:
            logger.info(f"Sending email to {message.to} via Resend")
            response = resend.Emails.send(params)

            provider_msg_id = None
            if isinstance(response, dict):
                provider_msg_id = response.get("id")
            elif hasattr(response, "id"):
                provider_msg_id = response.id

            logger.info(f"Email sent successfully: {provider_msg_id}")
            return EmailResult(
                success=True,
                message_id=internal_id,
                provider_message_id=provider_msg_id,
                status=EmailStatus.SENT,
            )

        except resend.exceptions.ResendError as e:
            logger.error(f"Resend API error: {e}")
            return EmailResult(
                success=False,
                message_id=internal_id,
                error=str(e),
                status=EmailStatus.FAILED
            )
        except Exception as e:
            error_msg = f"Unexpected error sending email: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return EmailResult(
                success=False,
                message_id=internal_id,
                error=error_msg,
                status=EmailStatus.FAILED
            )

    def get_status(self) -> Dict[str, Any]:
        """Get client configuration status."""
        return {
            "provider": self.provider,
            "configured": self.is_configured(),
            "from_address": self.from_address or "Not set",
            "api_key_set": bool(self.api_key)
        }
