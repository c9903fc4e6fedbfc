"""
Verification Token Utilities

One-time email verification tokens issued when a registration is approved.
Tokens are 32-character lowercase hex strings and expire after 30 days.
The verification flow that consumes them checks format and expiry.
"""

import hashlib
import re
import secrets
from datetime import UTC, datetime, timedelta
from uuid import UUID

VERIFICATION_TOKEN_LENGTH = 32
VERIFICATION_TOKEN_EXPIRY_DAYS = 30

_TOKEN_PATTERN = re.compile(rf"^[a-z0-9]{{{VERIFICATION_TOKEN_LENGTH}}}$")


def generate_verification_token(registration_id: UUID, email: str) -> str:
    """
    Generate a verification token for a registration.

    The token is derived from the registration ID, email, current time and a
    random nonce, hashed with SHA-256 and truncated to 32 hex characters.

    Args:
        registration_id: The registration the token belongs to
        email: The alumni email address

    Returns:
        32-character lowercase hex token
    """
    material = f"{registration_id}|{email}|{datetime.now(UTC).timestamp()}|{secrets.token_hex(16)}"
    return hashlib.sha256(material.encode()).hexdigest()[:VERIFICATION_TOKEN_LENGTH]


def validate_token_format(token: str | None) -> bool:
    """Check that a token is 32 lowercase alphanumeric characters."""
    if not token:
        return False
    return bool(_TOKEN_PATTERN.match(token))


def calculate_token_expiry(now: datetime | None = None) -> datetime:
    """Return the expiry datetime for a token issued at ``now`` (UTC)."""
    issued_at = now or datetime.now(UTC)
    return issued_at + timedelta(days=VERIFICATION_TOKEN_EXPIRY_DAYS)
