"""Driver account endpoints.

Endpoints:
  - /yus/driver-login
  - /yus/driver-logout
  - /yus/driver-delete-account
  - /yus/send-otp-driver-password
  - /yus/verify-otp-driver-password
"""

from __future__ import annotations

import logging
from typing import Any

from drivetrack._http import Transport
from drivetrack.exceptions import ApiError, AuthenticationError, InvalidInputError
from drivetrack.models.account import LoginResult, OtpRequestResult, PasswordResetResult

_logger = logging.getLogger(__name__)

LOGIN_ENDPOINT = "/yus/driver-login"
LOGOUT_ENDPOINT = "/yus/driver-logout"
DELETE_ACCOUNT_ENDPOINT = "/yus/driver-delete-account"
SEND_OTP_ENDPOINT = "/yus/send-otp-driver-password"
VERIFY_OTP_ENDPOINT = "/yus/verify-otp-driver-password"


def _require(**fields: str) -> None:
    for name, value in fields.items():
        if not value or not value.strip():
            raise InvalidInputError(f"{name} must not be empty")


async def login(transport: Transport, driver_id: str, password: str) -> LoginResult:
    """Authenticate a driver and return the issued session.

    Raises
    ------
    AuthenticationError
        If the credentials are rejected or no session is issued.
    """
    _require(driver_id=driver_id, password=password)
    response = await transport.post_form(
        LOGIN_ENDPOINT,
        {"driver_id": driver_id.strip(), "password": password},
    )
    result = LoginResult.model_validate(response)
    if not result.is_valid:
        raise AuthenticationError(
            result.message or "Invalid driver ID or password",
            code=result.login_status or "invalid",
            endpoint=LOGIN_ENDPOINT,
        )
    if result.session_id is None:
        raise AuthenticationError(
            "No session_id received from server",
            code="no_session",
            endpoint=LOGIN_ENDPOINT,
        )
    _logger.info("Driver %s logged in", driver_id.strip())
    return result


async def logout(transport: Transport, token: str) -> dict[str, Any]:
    """Tell the backend to end the session behind *token*."""
    return await transport.post_form(LOGOUT_ENDPOINT, {}, token=token)


async def request_account_deletion(transport: Transport, token: str) -> dict[str, Any]:
    """File an account deletion request for the driver owning *token*."""
    return await transport.post_form(DELETE_ACCOUNT_ENDPOINT, {}, token=token)


async def request_password_otp(transport: Transport, driver_id: str, email: str) -> OtpRequestResult:
    """Ask the backend to email a one-time password for a password reset."""
    _require(driver_id=driver_id, email=email)
    if "@" not in email:
        raise InvalidInputError("email is not a valid address")
    response = await transport.post_form(
        SEND_OTP_ENDPOINT,
        {"driver_id": driver_id.strip(), "email": email.strip()},
    )
    result = OtpRequestResult.model_validate(response)
    if result.status == "no driver found":
        raise ApiError(
            "No driver found with this ID and email",
            code="no_driver",
            endpoint=SEND_OTP_ENDPOINT,
        )
    if not result.otp_sent:
        raise ApiError("Failed to send OTP", code=result.status or "otp_not_sent", endpoint=SEND_OTP_ENDPOINT)
    return result


_OTP_ERRORS = {
    "invalid_otp": "Invalid OTP",
    "otp_expired": "OTP has expired, request a new one",
}


async def verify_password_otp(
    transport: Transport,
    driver_id: str,
    email: str,
    password: str,
    otp: str,
) -> PasswordResetResult:
    """Set a new password using the emailed OTP."""
    _require(driver_id=driver_id, email=email, password=password, otp=otp)
    response = await transport.post_form(
        VERIFY_OTP_ENDPOINT,
        {
            "driver_id": driver_id.strip(),
            "email": email.strip(),
            "password": password,
            "otp": otp.strip(),
        },
    )
    result = PasswordResetResult.model_validate(response)
    if result.success:
        return result
    if result.status in _OTP_ERRORS:
        raise ApiError(_OTP_ERRORS[result.status], code=result.status, endpoint=VERIFY_OTP_ENDPOINT)
    raise ApiError(
        result.message or "Failed to set password",
        code=result.status or "failed",
        endpoint=VERIFY_OTP_ENDPOINT,
    )
