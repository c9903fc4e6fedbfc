"""
Registration Emails

Approval email sent when a registration passes ERP validation, with delivery
tracking. Every attempt is recorded in the email log using its own database
session so a tracking failure never affects the send or the caller's unit of
work.
"""

import logging
import time
from html import escape
from uuid import UUID

from kq_alumni.core.config import settings
from kq_alumni.core.database import async_session_maker
from kq_alumni.core.email import EmailDeliveryError, EmailDeliveryMode, send_email
from kq_alumni.core.security import VERIFICATION_TOKEN_EXPIRY_DAYS
from kq_alumni.modules.registrations import repository
from kq_alumni.modules.registrations.models import EmailStatus, EmailType

logger = logging.getLogger(__name__)

APPROVAL_EMAIL_SUBJECT = "Welcome to Kenya Airways Alumni Network!"


def build_verification_url(verification_token: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/verify/{verification_token}"


def render_approval_email(alumni_name: str, verification_token: str) -> str:
    """Render the approval email HTML."""
    # Escape user inputs to prevent XSS
    safe_alumni_name = escape(alumni_name)
    verification_url = escape(build_verification_url(verification_token))

    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <style>
            body {{ font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 40px 20px; }}
            .header {{ color: #dc143c; margin-bottom: 24px; }}
            .success-banner {{ background-color: #d1fae5; border: 1px solid #22c55e; padding: 16px; border-radius: 8px; margin: 16px 0; text-align: center; }}
            .button {{ display: inline-block; background-color: #dc143c; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; margin: 24px 0; }}
            .link {{ word-break: break-all; color: #6b7280; font-size: 14px; }}
            .warning {{ background-color: #fef3c7; border: 1px solid #f59e0b; padding: 12px 16px; border-radius: 8px; margin: 16px 0; font-size: 14px; }}
            .footer {{ margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }}
        </style>
    </head>
    <body>
        <div class="container">
            <h1 class="header">Welcome to the Kenya Airways Alumni Network!</h1>

            <div class="success-banner">
                <strong>Congratulations!</strong> Your alumni registration has been approved.
            </div>

            <p>Dear {safe_alumni_name},</p>

            <p>We have confirmed your employment history with Kenya Airways. Please verify your email address to activate your alumni membership:</p>

            <a href="{verification_url}" class="button">Verify Email Address</a>

            <p class="link">Or copy this link into your browser:<br>{verification_url}</p>

            <div class="warning">
                <strong>Note:</strong> This link expires in {VERIFICATION_TOKEN_EXPIRY_DAYS} days.
            </div>

            <div class="footer">
                <p>Karibu tena!</p>
                <p>Kenya Airways Alumni Relations</p>
            </div>
        </div>
    </body>
    </html>
    """


async def _log_email_delivery(
    to_email: str,
    subject: str,
    email_type: EmailType,
    status: EmailStatus,
    registration_id: UUID | None,
    error_message: str | None,
    duration_ms: int,
) -> None:
    """Record an email attempt. Failures are logged and swallowed."""
    try:
        async with async_session_maker() as db:
            await repository.create_email_log(
                db,
                to_email=to_email,
                subject=subject,
                email_type=email_type,
                status=status,
                registration_id=registration_id,
                error_message=error_message,
                duration_ms=duration_ms,
            )
    except Exception as e:
        logger.warning(f"Failed to log email delivery to {to_email}: {e}")


async def send_approval_email(
    alumni_name: str,
    email: str,
    verification_token: str,
    *,
    registration_id: UUID | None = None,
) -> bool:
    """
    Send the approval email with the email verification link.

    Args:
        alumni_name: Name to greet the alumni with
        email: Recipient email address
        verification_token: Token embedded in the verification link
        registration_id: Registration the email belongs to (for the email log)

    Returns:
        True if the email was sent (or logged in mock mode), False on failure.
        Never raises.
    """
    html_content = render_approval_email(alumni_name, verification_token)
    started = time.perf_counter()
    error_message: str | None = None

    try:
        mode = await send_email(
            to_email=email,
            subject=APPROVAL_EMAIL_SUBJECT,
            html_content=html_content,
        )
        status = EmailStatus.SENT if mode == EmailDeliveryMode.SENT else EmailStatus.MOCK_MODE
    except EmailDeliveryError as e:
        logger.error(f"Failed to send approval email to {email}: {e}")
        status = EmailStatus.FAILED
        error_message = str(e)

    duration_ms = int((time.perf_counter() - started) * 1000)

    await _log_email_delivery(
        to_email=email,
        subject=APPROVAL_EMAIL_SUBJECT,
        email_type=EmailType.APPROVAL,
        status=status,
        registration_id=registration_id,
        error_message=error_message,
        duration_ms=duration_ms,
    )

    return status != EmailStatus.FAILED
