"""
Email Service using Resend

Low-level email delivery. Message templates and delivery tracking live with
the module that sends them.
"""

import asyncio
import logging
from enum import Enum

import resend

from kq_alumni.core.config import settings

logger = logging.getLogger(__name__)


class EmailDeliveryMode(str, Enum):
    """How an email was handled."""

    SENT = "sent"
    LOGGED = "logged"  # Mock mode or no API key - logged instead of sent


class EmailDeliveryError(Exception):
    """Raised when the email provider rejects or fails to accept a message."""


async def send_email(
    to_email: str,
    subject: str,
    html_content: str,
) -> EmailDeliveryMode:
    """
    Send an email using Resend.

    Args:
        to_email: Recipient email address
        subject: Email subject line
        html_content: HTML content of the email

    Returns:
        EmailDeliveryMode.SENT when handed to Resend, EmailDeliveryMode.LOGGED
        when mock mode is on or no API key is configured

    Raises:
        EmailDeliveryError: If Resend fails to accept the message
    """
    email_settings = settings.email

    if email_settings.use_mock_email_service:
        logger.info(
            f"[MOCK MODE] Email would be sent: TO: {to_email} | SUBJECT: {subject} | "
            f"BODY LENGTH: {len(html_content)} characters"
        )
        return EmailDeliveryMode.LOGGED

    if not email_settings.resend_api_key:
        logger.warning("RESEND_API_KEY not set - logging email instead of sending")
        logger.info(f"EMAIL TO: {to_email} | SUBJECT: {subject}")
        return EmailDeliveryMode.LOGGED

    resend.api_key = email_settings.resend_api_key

    params: resend.Emails.SendParams = {
        "from": email_settings.email_from,
        "to": [to_email],
        "subject": subject,
        "html": html_content,
    }

    try:
        # Run sync Resend call in thread pool to avoid blocking event loop
        email = await asyncio.to_thread(resend.Emails.send, params)
    except Exception as e:
        raise EmailDeliveryError(f"{type(e).__name__}: {e}") from e

    logger.info(f"Email sent successfully to {to_email}, id: {email['id']}")
    return EmailDeliveryMode.SENT
