"""
Registrations Repository

Database operations used by the approval processing job.

Design Principles:
- All queries are parameterized (no SQL injection)
- Async operations for non-blocking I/O
- Single responsibility - only database operations, no business logic
- Writes are added to the caller's session; the caller owns the commit
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    AlumniRegistration,
    AuditLog,
    EmailLog,
    EmailStatus,
    EmailType,
    RegistrationStatus,
)


def build_pending_registrations_query(
    created_before: datetime,
    limit: int,
    lock_rows: bool = False,
) -> Select[tuple[AlumniRegistration]]:
    """
    Build the eligible-registrations query for the approval job.

    Selects registrations that:
    1. Are in PENDING status
    2. Were created at or before the cutoff
    3. Have not been manually reviewed
    4. Are not flagged for manual review

    Ordered oldest first and limited to one batch.

    Args:
        created_before: Cutoff for created_at (inclusive)
        limit: Maximum number of rows (batch size)
        lock_rows: Add FOR NO KEY UPDATE SKIP LOCKED so concurrent workers never
                   pick up the same rows. NO KEY UPDATE leaves foreign key
                   checks from other sessions (email log inserts) unblocked

    Returns:
        The SELECT statement
    """
    query = (
        select(AlumniRegistration)
        .where(
            and_(
                AlumniRegistration.registration_status == RegistrationStatus.PENDING,
                AlumniRegistration.created_at <= created_before,
                AlumniRegistration.manually_reviewed.is_(False),
                AlumniRegistration.requires_manual_review.is_(False),
            )
        )
        .order_by(AlumniRegistration.created_at.asc())
        .limit(limit)
    )

    if lock_rows:
        query = query.with_for_update(skip_locked=True, key_share=True)

    return query


async def get_registrations_for_processing(
    db: AsyncSession,
    created_before: datetime,
    limit: int,
    lock_rows: bool = False,
) -> list[AlumniRegistration]:
    """
    Get the next batch of pending registrations for ERP validation.

    Args:
        db: Database session
        created_before: Cutoff for created_at (inclusive)
        limit: Maximum number of registrations to return
        lock_rows: Lock the selected rows until the session commits

    Returns:
        Registrations ordered by created_at ascending
    """
    result = await db.execute(build_pending_registrations_query(created_before, limit, lock_rows))
    return list(result.scalars().all())


def add_audit_log(
    db: AsyncSession,
    registration_id: UUID,
    action: str,
    notes: str | None = None,
    previous_status: str | None = None,
    new_status: str | None = None,
    performed_by: str = "System",
    is_automated: bool = True,
    timestamp: datetime | None = None,
) -> AuditLog:
    """
    Append an audit log entry to the session.

    The entry is persisted with the caller's unit of work.
    """
    entry = AuditLog(
        registration_id=registration_id,
        action=action,
        performed_by=performed_by,
        notes=notes,
        previous_status=previous_status,
        new_status=new_status,
        is_automated=is_automated,
    )
    if timestamp is not None:
        entry.timestamp = timestamp

    db.add(entry)
    return entry


async def create_email_log(
    db: AsyncSession,
    to_email: str,
    subject: str,
    email_type: EmailType,
    status: EmailStatus,
    registration_id: UUID | None = None,
    error_message: str | None = None,
    duration_ms: int | None = None,
    retry_count: int = 0,
) -> EmailLog:
    """Create and commit an email delivery record."""
    email_log = EmailLog(
        registration_id=registration_id,
        to_email=to_email,
        subject=subject,
        email_type=email_type,
        status=status,
        error_message=error_message,
        duration_ms=duration_ms,
        retry_count=retry_count,
    )

    db.add(email_log)
    await db.commit()

    return email_log
