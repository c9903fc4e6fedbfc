"""
Unit tests for the ERP validation client.

HTTP calls go through an httpx MockTransport.
"""

import json
from datetime import UTC, date, datetime, timedelta

import httpx
import pytest

from kq_alumni.core.config import ErpSettings, MockEmployee
from kq_alumni.core.erp import NOT_FOUND_MESSAGE, ErpClient, ErpServiceError


def make_settings(**overrides) -> ErpSettings:
    values = {
        "base_url": "http://erp.internal:7010",
        "endpoint": "/soa-infra/resources/default/HR_Leavers_Staff_Number/HR_Leavers",
        "timeout_seconds": 5,
    }
    values.update(overrides)
    return ErpSettings(**values)


def make_client(handler, **overrides) -> ErpClient:
    transport = httpx.MockTransport(handler)
    return ErpClient(make_settings(**overrides), client=httpx.AsyncClient(transport=transport))


class TestErpClient:
    """Tests for real-mode validation."""

    @pytest.mark.asyncio
    async def test_found_staff_number_is_valid(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "found": True,
                    "staffNumber": "0012345",
                    "fullName": "Jane Doe",
                    "department": "HR",
                    "exitDate": "2023-06-30T00:00:00",
                },
            )

        client = make_client(handler)

        result = await client.validate_staff_number("0012345")

        assert result.is_valid is True
        assert result.staff_name == "Jane Doe"
        assert result.department == "HR"
        assert result.exit_date == date(2023, 6, 30)
        assert result.is_mock_data is False
        assert seen["body"] == {"staffNumber": "0012345"}
        assert seen["url"] == (
            "http://erp.internal:7010/soa-infra/resources/default/"
            "HR_Leavers_Staff_Number/HR_Leavers"
        )

    @pytest.mark.asyncio
    async def test_not_found_flag_is_invalid(self):
        client = make_client(lambda request: httpx.Response(200, json={"found": False}))

        result = await client.validate_staff_number("0099999")

        assert result.is_valid is False
        assert result.error_message == NOT_FOUND_MESSAGE

    @pytest.mark.asyncio
    async def test_404_is_invalid(self):
        client = make_client(lambda request: httpx.Response(404))

        result = await client.validate_staff_number("0099999")

        assert result.is_valid is False
        assert result.error_message == NOT_FOUND_MESSAGE

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        client = make_client(lambda request: httpx.Response(503))

        with pytest.raises(ErpServiceError, match="503"):
            await client.validate_staff_number("0012345")

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(handler)

        with pytest.raises(ErpServiceError, match="timeout"):
            await client.validate_staff_number("0012345")

    @pytest.mark.asyncio
    async def test_connection_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(ErpServiceError):
            await client.validate_staff_number("0012345")

    @pytest.mark.asyncio
    async def test_unreadable_body_raises(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

        with pytest.raises(ErpServiceError):
            await client.validate_staff_number("0012345")

    @pytest.mark.asyncio
    async def test_sends_api_key_and_basic_auth(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["headers"] = request.headers
            return httpx.Response(200, json={"found": False})

        client = make_client(
            handler,
            api_key="secret-key",
            basic_auth_username="svc",
            basic_auth_password="pw",
        )

        await client.validate_staff_number("0012345")

        assert seen["headers"]["X-API-Key"] == "secret-key"
        assert seen["headers"]["Authorization"].startswith("Basic ")


class TestErpClientMockMode:
    """Tests for mock mode."""

    @pytest.mark.asyncio
    async def test_mock_employee_is_valid(self):
        exit_date = datetime(2022, 1, 15, tzinfo=UTC)
        client = ErpClient(
            make_settings(
                enable_mock_mode=True,
                mock_employees=[
                    MockEmployee(
                        staff_number="00C5050",
                        full_name="Mary Wanjiku",
                        department="Customer Service",
                        exit_date=exit_date,
                    )
                ],
            )
        )

        result = await client.validate_staff_number("00C5050")

        assert result.is_valid is True
        assert result.staff_name == "Mary Wanjiku"
        assert result.exit_date == date(2022, 1, 15)
        assert result.is_mock_data is True

    @pytest.mark.asyncio
    async def test_legacy_mock_staff_number_uses_prefix(self):
        client = ErpClient(make_settings(enable_mock_mode=True, mock_staff_numbers=["00A1234"]))

        result = await client.validate_staff_number("00A1234")

        assert result.is_valid is True
        assert result.department == "IT Department"
        assert result.exit_date == (datetime.now(UTC) - timedelta(days=180)).date()

    @pytest.mark.asyncio
    async def test_unknown_staff_number_is_invalid(self):
        client = ErpClient(make_settings(enable_mock_mode=True, mock_staff_numbers=["0012345"]))

        result = await client.validate_staff_number("0099999")

        assert result.is_valid is False
        assert "0099999" in result.error_message
        assert result.is_mock_data is True

    @pytest.mark.asyncio
    async def test_mock_mode_makes_no_http_calls(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("ERP API must not be called in mock mode")

        client = make_client(handler, enable_mock_mode=True, mock_staff_numbers=["0012345"])

        result = await client.validate_staff_number("0012345")

        assert result.is_valid is True
