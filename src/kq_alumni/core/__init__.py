"""
Core module - Configuration, database, logging, scheduling and integrations.
"""

from kq_alumni.core.config import get_settings, settings
from kq_alumni.core.database import Base, close_db, get_db, init_db
from kq_alumni.core.logging import configure_logging
from kq_alumni.core.security import (
    calculate_token_expiry,
    generate_verification_token,
    validate_token_format,
)

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "get_db",
    "init_db",
    "close_db",
    # Logging
    "configure_logging",
    # Security
    "generate_verification_token",
    "validate_token_format",
    "calculate_token_expiry",
]
