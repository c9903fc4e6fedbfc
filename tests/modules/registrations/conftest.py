"""
Fixtures for registrations tests.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from kq_alumni.core.config import BackgroundJobSettings
from kq_alumni.core.erp import ErpValidationResult
from kq_alumni.modules.registrations.models import AlumniRegistration, RegistrationStatus

FIXED_NOW = datetime(2025, 3, 12, 9, 30, tzinfo=UTC)


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def clock():
    """Clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.flush = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def job_settings():
    """Job settings with the documented defaults."""
    return BackgroundJobSettings(batch_size=10, max_retry_attempts=5, retry_delay_minutes=10)


@pytest.fixture
def mock_erp_client():
    """ERP client that confirms every staff number."""
    client = MagicMock()
    client.validate_staff_number = AsyncMock(
        return_value=ErpValidationResult(
            is_valid=True,
            staff_number="0012345",
            staff_name="Jane Doe",
            department="HR",
        )
    )
    return client


@pytest.fixture
def mock_send_approval_email():
    return AsyncMock(return_value=True)


@pytest.fixture
def mock_generate_token():
    return MagicMock(return_value="a" * 32)


def make_registration(**overrides) -> MagicMock:
    """Create a pending registration model with sensible defaults."""
    registration = MagicMock(spec=AlumniRegistration)
    registration.id = uuid4()
    registration.registration_number = "KQA-2025-00001"
    registration.staff_number = "0012345"
    registration.full_name = "Jane Doe"
    registration.email = "jane.doe@example.com"
    registration.registration_status = RegistrationStatus.PENDING
    registration.erp_validated = False
    registration.erp_validated_at = None
    registration.erp_staff_name = None
    registration.erp_department = None
    registration.erp_exit_date = None
    registration.erp_validation_attempts = 0
    registration.last_erp_validation_attempt = None
    registration.requires_manual_review = False
    registration.manual_review_reason = None
    registration.manually_reviewed = False
    registration.email_verification_token = None
    registration.email_verification_token_expiry = None
    registration.approval_email_sent = False
    registration.approval_email_sent_at = None
    registration.approved_at = None
    registration.created_at = FIXED_NOW - timedelta(hours=1)
    registration.updated_at = FIXED_NOW - timedelta(hours=1)
    registration.updated_by = None
    for key, value in overrides.items():
        setattr(registration, key, value)
    return registration


@pytest.fixture
def sample_registration():
    """A fresh pending registration that has never been validated."""
    return make_registration()


@pytest.fixture
def registration_factory():
    """Factory for registrations with field overrides."""
    return make_registration
