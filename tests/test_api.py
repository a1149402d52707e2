from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from drivetrack._api import account, bus
from drivetrack.exceptions import ApiError, AuthenticationError, InvalidInputError


class _StubTransport:
    def __init__(self, response: dict[str, Any]) -> None:
        self.response = response
        self.requests: list[tuple[str, str, dict[str, str], str | None]] = []

    async def get_json(self, endpoint: str, *, token: str | None = None) -> dict[str, Any]:
        self.requests.append(("GET", endpoint, {}, token))
        return self.response

    async def post_form(self, endpoint: str, form: Mapping[str, str], *, token: str | None = None) -> dict[str, Any]:
        self.requests.append(("POST", endpoint, dict(form), token))
        return self.response


@pytest.mark.asyncio
async def test_login_valid() -> None:
    transport = _StubTransport({"login_status": "valid", "session_id": "tok"})

    result = await account.login(transport, "D-17", "pw")

    assert result.session_id == "tok"
    assert transport.requests == [("POST", "/yus/driver-login", {"driver_id": "D-17", "password": "pw"}, None)]


@pytest.mark.asyncio
async def test_login_without_session_id_is_rejected() -> None:
    transport = _StubTransport({"login_status": "valid", "session_id": ""})

    with pytest.raises(AuthenticationError) as exc_info:
        await account.login(transport, "D-17", "pw")

    assert exc_info.value.code == "no_session"


@pytest.mark.asyncio
@pytest.mark.parametrize(("driver_id", "password"), [("", "pw"), ("D-17", ""), ("  ", "pw")])
async def test_login_rejects_empty_fields_before_calling_backend(driver_id: str, password: str) -> None:
    transport = _StubTransport({})

    with pytest.raises(InvalidInputError):
        await account.login(transport, driver_id, password)

    assert transport.requests == []


@pytest.mark.asyncio
async def test_logout_sends_token() -> None:
    transport = _StubTransport({"status": "ok"})

    await account.logout(transport, "tok")

    assert transport.requests == [("POST", "/yus/driver-logout", {}, "tok")]


@pytest.mark.asyncio
async def test_otp_request_sent() -> None:
    transport = _StubTransport({"status": "ok", "otp_sent": True})

    result = await account.request_password_otp(transport, "D-17", " d@example.com ")

    assert result.otp_sent
    assert transport.requests[0][2] == {"driver_id": "D-17", "email": "d@example.com"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("response", "code"),
    [
        ({"status": "no driver found"}, "no_driver"),
        ({"status": "mail_failed", "otp_sent": False}, "mail_failed"),
    ],
)
async def test_otp_request_failures(response: dict[str, Any], code: str) -> None:
    with pytest.raises(ApiError) as exc_info:
        await account.request_password_otp(_StubTransport(response), "D-17", "d@example.com")
    assert exc_info.value.code == code


@pytest.mark.asyncio
async def test_otp_request_rejects_malformed_email() -> None:
    with pytest.raises(InvalidInputError):
        await account.request_password_otp(_StubTransport({}), "D-17", "not-an-email")


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["invalid_otp", "otp_expired"])
async def test_verify_otp_errors(status: str) -> None:
    with pytest.raises(ApiError) as exc_info:
        await account.verify_password_otp(_StubTransport({"status": status}), "D-17", "d@example.com", "pw", "1234")
    assert exc_info.value.code == status


@pytest.mark.asyncio
async def test_verify_otp_success() -> None:
    transport = _StubTransport({"status": "success", "message": "Password updated"})

    result = await account.verify_password_otp(transport, "D-17", "d@example.com", "pw", " 1234 ")

    assert result.success
    assert result.session_id is None
    assert transport.requests[0][2]["otp"] == "1234"


@pytest.mark.asyncio
async def test_fetch_assigned_bus_accepts_camel_case() -> None:
    transport = _StubTransport({"busId": "B-9", "routeName": " Ring Road "})

    assignment = await bus.fetch_assigned_bus(transport, "tok")

    assert assignment.bus_id == "B-9"
    assert assignment.route_name == "Ring Road"
    assert transport.requests == [("GET", "/yus/get-allotted-bus", {}, "tok")]


@pytest.mark.asyncio
async def test_fetch_assigned_bus_without_bus() -> None:
    with pytest.raises(ApiError) as exc_info:
        await bus.fetch_assigned_bus(_StubTransport({"route_name": "Ring Road"}), "tok")
    assert exc_info.value.code == "no_bus"
