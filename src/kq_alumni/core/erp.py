"""
ERP Validation Client

Validates staff numbers against the Kenya Airways HR leavers service.

The ERP API lives on the internal network only and must never be exposed to
the frontend. Two kinds of failure are kept apart:

- An explicit "not found" answer is a normal result (``is_valid=False``).
- Transport failures, timeouts and unexpected HTTP errors raise
  ``ErpServiceError`` so callers can treat them as transient.

Mock mode (development only) answers from configured mock employees instead
of calling the API.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from kq_alumni.core.config import ErpSettings

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Staff number not found. Please verify and contact HR if issue persists."

# Legacy mock data keyed by staff-number prefix
_MOCK_STAFF_BY_PREFIX: dict[str, tuple[str, str]] = {
    "000": ("John Kamau Mwangi", "Flight Operations"),
    "00C": ("Mary Wanjiku Njeri", "Customer Service"),
    "00A": ("Peter Omondi Otieno", "IT Department"),
    "00H": ("Sarah Akinyi Otieno", "Cabin Crew"),
}
_MOCK_DEFAULT_STAFF = ("Mock Alumni Member", "General Department")


class ErpServiceError(Exception):
    """Raised when the ERP service cannot be reached or answers unexpectedly."""


@dataclass
class ErpValidationResult:
    """Outcome of a staff number validation."""

    is_valid: bool
    staff_number: str | None = None
    staff_name: str | None = None
    department: str | None = None
    exit_date: date | None = None
    error_message: str | None = None
    is_mock_data: bool = False

    @classmethod
    def invalid(cls, error_message: str, is_mock_data: bool = False) -> "ErpValidationResult":
        return cls(is_valid=False, error_message=error_message, is_mock_data=is_mock_data)


class ErpApiResponse(BaseModel):
    """Response body of the ERP leavers endpoint."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    found: bool = False
    staff_number: str | None = None
    full_name: str | None = None
    department: str | None = None
    exit_date: datetime | None = None


class ErpClient:
    """
    Async client for the ERP staff validation API.

    Args:
        erp_settings: ERP configuration section
        client: Optional pre-configured httpx client (tests inject a
            MockTransport here). When omitted a client is created per call.
    """

    def __init__(self, erp_settings: ErpSettings, client: httpx.AsyncClient | None = None):
        self._settings = erp_settings
        self._client = client

    def _build_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._settings.api_key:
            headers[self._settings.api_key_header] = self._settings.api_key
        return headers

    def _build_auth(self) -> httpx.BasicAuth | None:
        if self._settings.basic_auth_username and self._settings.basic_auth_password:
            return httpx.BasicAuth(
                self._settings.basic_auth_username,
                self._settings.basic_auth_password,
            )
        return None

    async def validate_staff_number(self, staff_number: str) -> ErpValidationResult:
        """
        Validate a staff number against the ERP leavers database.

        Args:
            staff_number: Staff number to validate (e.g. 0012345, 00C5050)

        Returns:
            Validation result with staff details when found

        Raises:
            ErpServiceError: On transport failure, timeout or unexpected HTTP status
        """
        if self._settings.enable_mock_mode:
            logger.warning("ERP mock mode enabled - using fake validation data")
            return self._mock_validation_result(staff_number)

        logger.info(f"Validating staff number {staff_number} against ERP")

        try:
            if self._client is not None:
                response = await self._post(self._client, staff_number)
            else:
                async with httpx.AsyncClient(timeout=self._settings.timeout_seconds) as client:
                    response = await self._post(client, staff_number)
        except httpx.TimeoutException as e:
            raise ErpServiceError(f"ERP API timeout for staff {staff_number}") from e
        except httpx.HTTPError as e:
            raise ErpServiceError(f"HTTP error calling ERP API: {e}") from e

        if response.status_code == httpx.codes.NOT_FOUND:
            logger.warning(f"Staff number {staff_number} not found in ERP (404)")
            return ErpValidationResult.invalid(NOT_FOUND_MESSAGE)

        if not response.is_success:
            raise ErpServiceError(f"ERP API returned error status {response.status_code}")

        try:
            payload = ErpApiResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ErpServiceError(f"Unreadable ERP response: {e}") from e

        if not payload.found:
            logger.warning(f"Staff number {staff_number} not found in ERP")
            return ErpValidationResult.invalid(NOT_FOUND_MESSAGE)

        return ErpValidationResult(
            is_valid=True,
            staff_number=payload.staff_number or staff_number,
            staff_name=payload.full_name,
            department=payload.department,
            exit_date=payload.exit_date.date() if payload.exit_date else None,
        )

    async def _post(self, client: httpx.AsyncClient, staff_number: str) -> httpx.Response:
        return await client.post(
            self._settings.full_url,
            json={"staffNumber": staff_number},
            headers=self._build_headers(),
            auth=self._build_auth(),
            timeout=self._settings.timeout_seconds,
        )

    def _mock_validation_result(self, staff_number: str) -> ErpValidationResult:
        """Answer from configured mock data. Development only."""
        for employee in self._settings.mock_employees:
            if employee.staff_number == staff_number:
                logger.info(
                    f"[MOCK ERP] Found employee {employee.staff_number} ({employee.full_name})"
                )
                exit_date = employee.exit_date or (datetime.now(UTC) - timedelta(days=180))
                return ErpValidationResult(
                    is_valid=True,
                    staff_number=employee.staff_number,
                    staff_name=employee.full_name,
                    department=employee.department,
                    exit_date=exit_date.date(),
                    is_mock_data=True,
                )

        if staff_number not in self._settings.mock_staff_numbers:
            logger.warning(
                f"Staff number {staff_number} not found in mock employees or mock staff numbers"
            )
            return ErpValidationResult.invalid(
                f"Staff number {staff_number} not found in our records. "
                "Please verify your staff number and contact HR if this error persists.",
                is_mock_data=True,
            )

        staff_name, department = _MOCK_STAFF_BY_PREFIX.get(staff_number[:3], _MOCK_DEFAULT_STAFF)
        logger.info(f"[MOCK ERP] Using legacy mock data for {staff_number} - {staff_name}")

        return ErpValidationResult(
            is_valid=True,
            staff_number=staff_number,
            staff_name=staff_name,
            department=department,
            exit_date=(datetime.now(UTC) - timedelta(days=180)).date(),
            is_mock_data=True,
        )
