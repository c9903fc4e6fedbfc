"""
Automatic Approval Processing

Validates pending registrations against the ERP and moves each one to one of
three outcomes:

- Approved: ERP confirmed the staff number. A verification token is issued
  and the approval email is sent.
- Flagged for manual review: no staff number, or ERP validation kept failing
  until the retry budget ran out. The job never rejects; only HR can.
- Retry: ERP did not confirm the staff number yet. The next attempt waits for
  an exponentially growing delay.

All retry state lives on the registration row, so the job is stateless
between runs. Each batch is one unit of work: every change made while
processing the batch is committed together at the end.
"""

import asyncio
import enum
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from kq_alumni.core.config import BackgroundJobSettings
from kq_alumni.core.erp import ErpClient, ErpValidationResult
from kq_alumni.core.security import calculate_token_expiry, generate_verification_token
from kq_alumni.modules.registrations import repository
from kq_alumni.modules.registrations.emails import send_approval_email
from kq_alumni.modules.registrations.models import (
    AlumniRegistration,
    AuditAction,
    RegistrationStatus,
)

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "System"
AUTOMATIC_APPROVAL_ACTOR = "System (Automatic ERP Validation)"
MANUAL_REVIEW_STATUS_LABEL = "Pending (Requires Manual Review)"
MISSING_STAFF_NUMBER_REASON = "Staff number not available. May require re-verification."

# Registrations younger than this may still be being written by the creation path
CREATION_GRACE_PERIOD = timedelta(seconds=1)

ApprovalEmailSender = Callable[..., Awaitable[bool]]
TokenGenerator = Callable[[UUID, str], str]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ProcessingResult(str, enum.Enum):
    """Outcome of processing a single registration."""

    APPROVED = "approved"
    FLAGGED_FOR_MANUAL_REVIEW = "flagged_for_manual_review"
    RETRY = "retry"
    SKIPPED = "skipped"  # Backoff delay has not elapsed yet
    ERROR = "error"


@dataclass
class ApprovalBatchSummary:
    """Tally of one approval batch."""

    approved: int = 0
    flagged_for_manual_review: int = 0
    retried: int = 0
    skipped: int = 0
    errors: int = 0
    cancelled: bool = False
    elapsed_seconds: float = 0.0

    @property
    def processed(self) -> int:
        return (
            self.approved
            + self.flagged_for_manual_review
            + self.retried
            + self.skipped
            + self.errors
        )

    def record(self, result: ProcessingResult) -> None:
        if result == ProcessingResult.APPROVED:
            self.approved += 1
        elif result == ProcessingResult.FLAGGED_FOR_MANUAL_REVIEW:
            self.flagged_for_manual_review += 1
        elif result == ProcessingResult.RETRY:
            self.retried += 1
        elif result == ProcessingResult.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1

    def as_dict(self) -> dict[str, Any]:
        return {**asdict(self), "processed": self.processed}


def backoff_delay(attempts: int, retry_delay_minutes: int) -> timedelta:
    """
    Delay required after the given number of failed attempts.

    retry_delay_minutes * 2^(attempts - 1), so a 10 minute base gives gaps of
    10, 20, 40 and 80 minutes before attempts 2, 3, 4 and 5.
    """
    if attempts <= 0:
        return timedelta(0)
    return timedelta(minutes=retry_delay_minutes * 2 ** (attempts - 1))


class ApprovalProcessingJob:
    """
    Processes one batch of pending registrations.

    Args:
        db: Session holding the batch unit of work
        job_settings: Batch size, retry budget and base retry delay
        erp_client: ERP validation client
        send_approval_email: Async email sender returning True on success
        generate_token: Verification token generator
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        db: AsyncSession,
        job_settings: BackgroundJobSettings,
        erp_client: ErpClient,
        send_approval_email: ApprovalEmailSender = send_approval_email,
        generate_token: TokenGenerator = generate_verification_token,
        clock: Clock = _utcnow,
    ):
        self.db = db
        self.job_settings = job_settings
        self.erp_client = erp_client
        self._send_approval_email = send_approval_email
        self._generate_token = generate_token
        self._clock = clock

    async def process_pending_registrations(
        self,
        cancel_event: asyncio.Event | None = None,
    ) -> ApprovalBatchSummary:
        """
        Process the next batch of eligible registrations.

        Registrations are processed one at a time, oldest first. Errors on a
        single registration are isolated; anything that fails the batch as a
        whole (query or commit) rolls back and propagates to the scheduler.

        Args:
            cancel_event: When set, processing stops before the next
                          registration and the work done so far is committed

        Returns:
            Summary of outcomes for this batch
        """
        started = time.perf_counter()
        summary = ApprovalBatchSummary()

        try:
            registrations = await repository.get_registrations_for_processing(
                self.db,
                created_before=self._clock() - CREATION_GRACE_PERIOD,
                limit=self.job_settings.batch_size,
                lock_rows=self.job_settings.lock_rows,
            )

            if not registrations:
                logger.debug("No pending registrations to process")
                summary.elapsed_seconds = time.perf_counter() - started
                return summary

            logger.info(f"Processing {len(registrations)} pending registrations")
            self._warn_if_batch_blocked(registrations)

            for registration in registrations:
                if cancel_event is not None and cancel_event.is_set():
                    logger.warning(
                        f"Approval processing cancelled after {summary.processed} registrations"
                    )
                    summary.cancelled = True
                    break

                result = await self.process_single_registration(registration)
                summary.record(result)

            await self.db.commit()
        except Exception:
            logger.error("Approval batch failed, rolling back", exc_info=True)
            await self.db.rollback()
            raise

        summary.elapsed_seconds = time.perf_counter() - started

        logger.info(
            f"Approval batch completed in {summary.elapsed_seconds:.2f}s. "
            f"Approved: {summary.approved}, "
            f"Flagged for review: {summary.flagged_for_manual_review}, "
            f"Retry: {summary.retried}, Skipped: {summary.skipped}, Errors: {summary.errors}"
        )

        return summary

    async def process_single_registration(
        self,
        registration: AlumniRegistration,
    ) -> ProcessingResult:
        """Run one registration through the approval state machine."""
        if registration.erp_validation_attempts is None:
            registration.erp_validation_attempts = 0

        now = self._clock()

        if not self.should_retry_now(registration, now):
            if self._retry_budget_spent(registration):
                logger.warning(
                    f"Skipping registration {registration.id}: all "
                    f"{registration.erp_validation_attempts} ERP validation attempts used "
                    "without a definitive answer, needs manual attention"
                )
            else:
                logger.debug(
                    f"Skipping registration {registration.id}: "
                    f"backoff not elapsed (attempts: {registration.erp_validation_attempts})"
                )
            return ProcessingResult.SKIPPED

        if not (registration.staff_number or "").strip():
            logger.warning(
                f"Registration {registration.id} has no staff number - flagging for manual review"
            )
            self._flag_for_manual_review(registration, MISSING_STAFF_NUMBER_REASON, now)
            await self.db.flush()
            return ProcessingResult.FLAGGED_FOR_MANUAL_REVIEW

        registration.erp_validation_attempts += 1
        registration.last_erp_validation_attempt = now

        logger.info(
            f"Validating registration {registration.id} (staff number "
            f"{registration.staff_number}), attempt {registration.erp_validation_attempts}/"
            f"{self.job_settings.max_retry_attempts}"
        )

        try:
            validation = await self.erp_client.validate_staff_number(registration.staff_number)

            if validation.is_valid:
                await self.handle_valid_registration(registration, validation)
                return ProcessingResult.APPROVED

            return await self.handle_invalid_registration(registration, validation)
        except Exception as e:
            logger.error(
                f"Error processing registration {registration.id}: {e}",
                exc_info=True,
            )
            return ProcessingResult.ERROR

    def should_retry_now(self, registration: AlumniRegistration, now: datetime) -> bool:
        """
        Check whether the backoff delay for a registration has elapsed.

        Never-attempted registrations are always due. Registrations that
        used up the retry budget are never due.
        """
        attempts = registration.erp_validation_attempts or 0

        if attempts == 0:
            return True

        if attempts >= self.job_settings.max_retry_attempts:
            return False

        last_attempt = registration.last_erp_validation_attempt or registration.created_at
        next_attempt_at = last_attempt + backoff_delay(
            attempts, self.job_settings.retry_delay_minutes
        )
        return now >= next_attempt_at

    async def handle_valid_registration(
        self,
        registration: AlumniRegistration,
        validation: ErpValidationResult,
    ) -> None:
        """
        Approve a registration confirmed by the ERP.

        The token and audit entry are created before the registration is
        touched, so a failure in either leaves it Pending with only the
        attempt recorded. The approval stands even when the approval email
        cannot be sent.
        """
        now = self._clock()
        previous_status = registration.registration_status

        token = self._generate_token(registration.id, registration.email)
        token_expiry = calculate_token_expiry(now)

        repository.add_audit_log(
            self.db,
            registration_id=registration.id,
            action=AuditAction.AUTOMATIC_APPROVAL.value,
            performed_by=SYSTEM_ACTOR,
            notes=(
                "Automatically approved based on ERP validation. "
                f"Staff Name: {validation.staff_name}, Department: {validation.department}"
            ),
            previous_status=previous_status.value,
            new_status=RegistrationStatus.APPROVED.value,
            is_automated=True,
            timestamp=now,
        )

        registration.erp_validated = True
        registration.erp_validated_at = now
        registration.erp_staff_name = validation.staff_name
        registration.erp_department = validation.department
        registration.erp_exit_date = validation.exit_date

        registration.email_verification_token = token
        registration.email_verification_token_expiry = token_expiry

        registration.registration_status = RegistrationStatus.APPROVED
        registration.approved_at = now
        registration.updated_at = now
        registration.updated_by = AUTOMATIC_APPROVAL_ACTOR

        logger.info(
            f"Registration {registration.id} approved automatically "
            f"(staff: {validation.staff_name}, department: {validation.department})"
        )

        try:
            email_sent = await self._send_approval_email(
                registration.full_name,
                registration.email,
                token,
                registration_id=registration.id,
            )
        except Exception as e:
            logger.error(
                f"Approval email for registration {registration.id} raised: {e}",
                exc_info=True,
            )
            email_sent = False

        if email_sent:
            registration.approval_email_sent = True
            registration.approval_email_sent_at = self._clock()
            logger.info(f"Approval email sent for registration {registration.id}")
        else:
            logger.error(
                f"Failed to send approval email for registration {registration.id}; "
                "registration remains approved"
            )

    async def handle_invalid_registration(
        self,
        registration: AlumniRegistration,
        validation: ErpValidationResult,
    ) -> ProcessingResult:
        """Retry later, or flag for manual review once the retry budget is spent."""
        now = self._clock()
        attempts = registration.erp_validation_attempts or 0

        if attempts >= self.job_settings.max_retry_attempts:
            reason = (
                f"ERP validation failed after {attempts} attempts. "
                f"Last error: {validation.error_message}. "
                "HR should verify staff number and employment history manually."
            )
            logger.warning(
                f"Registration {registration.id} flagged for manual review after "
                f"{attempts} failed ERP validations"
            )
            self._flag_for_manual_review(registration, reason, now)
            return ProcessingResult.FLAGGED_FOR_MANUAL_REVIEW

        registration.updated_at = now

        next_delay = backoff_delay(attempts, self.job_settings.retry_delay_minutes)
        logger.info(
            f"ERP validation failed for registration {registration.id} "
            f"(attempt {attempts}/{self.job_settings.max_retry_attempts}): "
            f"{validation.error_message}. Next retry in {next_delay}"
        )
        return ProcessingResult.RETRY

    def _flag_for_manual_review(
        self,
        registration: AlumniRegistration,
        reason: str,
        now: datetime,
    ) -> None:
        registration.requires_manual_review = True
        registration.manual_review_reason = reason
        registration.updated_at = now

        repository.add_audit_log(
            self.db,
            registration_id=registration.id,
            action=AuditAction.FLAGGED_FOR_MANUAL_REVIEW.value,
            performed_by=SYSTEM_ACTOR,
            notes=reason,
            previous_status=registration.registration_status.value,
            new_status=MANUAL_REVIEW_STATUS_LABEL,
            is_automated=True,
            timestamp=now,
        )

    def _retry_budget_spent(self, registration: AlumniRegistration) -> bool:
        return (registration.erp_validation_attempts or 0) >= self.job_settings.max_retry_attempts

    def _warn_if_batch_blocked(self, registrations: list[AlumniRegistration]) -> None:
        # Spent rows stay eligible, so a full batch of them hides newer registrations
        if len(registrations) < self.job_settings.batch_size:
            return
        if all(self._retry_budget_spent(registration) for registration in registrations):
            logger.warning(
                f"All {len(registrations)} registrations in this batch have used their ERP "
                "retry budget; newer pending registrations are blocked until HR reviews them"
            )
