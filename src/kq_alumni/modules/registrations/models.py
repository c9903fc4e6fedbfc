"""
Registration Models

Database models for alumni registrations, their audit trail and email
delivery log. The tables are owned by the registration backend; this service
reads eligible registrations and updates their ERP validation state.
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from kq_alumni.core.database import Base


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class RegistrationStatus(str, enum.Enum):
    """Status of an alumni registration."""

    PENDING = "Pending"
    APPROVED = "Approved"  # ERP validated, verification email sent
    ACTIVE = "Active"  # Email verified
    REJECTED = "Rejected"  # Only set by HR, never by the approval job


class AuditAction(str, enum.Enum):
    """Actions recorded in the registration audit trail."""

    CREATED = "Created"
    AUTOMATIC_APPROVAL = "AutomaticApproval"
    FLAGGED_FOR_MANUAL_REVIEW = "Flagged for Manual Review"
    MANUAL_APPROVAL = "ManualApproval"
    REJECTED = "Rejected"
    EMAIL_VERIFIED = "EmailVerified"


class EmailType(str, enum.Enum):
    """Kinds of emails sent to alumni."""

    CONFIRMATION = "Confirmation"
    APPROVAL = "Approval"
    REJECTION = "Rejection"
    OTHER = "Other"


class EmailStatus(str, enum.Enum):
    """Delivery status of an email attempt."""

    SENT = "Sent"
    FAILED = "Failed"
    QUEUED = "Queued"
    MOCK_MODE = "MockMode"


class AlumniRegistration(Base):
    """
    Alumni registration.

    Only the columns the approval job reads or writes are mapped.
    """

    __tablename__ = "alumni_registrations"

    # Primary key
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    registration_number: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Personal information
    staff_number: Mapped[str | None] = mapped_column(String(7), nullable=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)

    # Workflow status (stored as its string value)
    registration_status: Mapped[RegistrationStatus] = mapped_column(
        Enum(
            RegistrationStatus,
            native_enum=False,
            length=50,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=RegistrationStatus.PENDING,
    )

    # ERP validation
    erp_validated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    erp_validated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    erp_staff_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    erp_department: Mapped[str | None] = mapped_column(String(200), nullable=True)
    erp_exit_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    erp_validation_attempts: Mapped[int | None] = mapped_column(Integer, nullable=True, default=0)
    last_erp_validation_attempt: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Manual review
    requires_manual_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    manual_review_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    manually_reviewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Email verification
    email_verification_token: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email_verification_token_expiry: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Approval
    approval_email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approval_email_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Indexes for the approval job query
    __table_args__ = (
        Index("ix_alumni_registrations_status", "registration_status"),
        Index("ix_alumni_registrations_created_at", "created_at"),
        Index("ix_alumni_registrations_requires_manual_review", "requires_manual_review"),
    )


class AuditLog(Base):
    """
    Audit trail entry for a registration.

    Append-only: entries are never updated or deleted.
    """

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    registration_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("alumni_registrations.id", ondelete="CASCADE"),
        nullable=False,
    )

    action: Mapped[str] = mapped_column(String(50), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(100), nullable=False, default="System")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    previous_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_automated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("ix_audit_logs_registration_id", "registration_id"),)


class EmailLog(Base):
    """
    Delivery record for a single email attempt.
    """

    __tablename__ = "email_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    registration_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("alumni_registrations.id", ondelete="SET NULL"),
        nullable=True,
    )

    to_email: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    email_type: Mapped[EmailType] = mapped_column(
        Enum(EmailType, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
    )
    status: Mapped[EmailStatus] = mapped_column(
        Enum(EmailStatus, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_email_logs_registration_id", "registration_id"),
        Index("ix_email_logs_status", "status"),
    )
