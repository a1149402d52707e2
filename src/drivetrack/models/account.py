"""Login and password-reset response models."""

from __future__ import annotations

from pydantic import field_validator

from drivetrack._normalize import safe_str
from drivetrack.models._base import DriveTrackModel


class LoginResult(DriveTrackModel):
    """Response of the driver login endpoint."""

    login_status: str = ""
    session_id: str | None = None
    message: str | None = None

    @field_validator("session_id", "message", mode="before")
    @classmethod
    def _coerce_optional_str(cls, value: object) -> str | None:
        return safe_str(value)

    @property
    def is_valid(self) -> bool:
        return self.login_status == "valid"


class OtpRequestResult(DriveTrackModel):
    """Response of the password-reset OTP request endpoint."""

    status: str = ""
    otp_sent: bool = False


class PasswordResetResult(DriveTrackModel):
    """Response of the OTP verification (set password) endpoint.

    ``session_id`` is present when the backend signs the driver in as
    part of the password change.
    """

    status: str = ""
    message: str | None = None
    session_id: str | None = None

    @field_validator("session_id", "message", mode="before")
    @classmethod
    def _coerce_optional_str(cls, value: object) -> str | None:
        return safe_str(value)

    @property
    def success(self) -> bool:
        return self.status == "success"
