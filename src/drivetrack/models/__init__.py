"""Typed models for drivetrack payloads."""

from drivetrack.models.account import LoginResult, OtpRequestResult, PasswordResetResult
from drivetrack.models.bus import BusAssignment
from drivetrack.models.position import PositionSample, PositionUpdate

__all__ = [
    "BusAssignment",
    "LoginResult",
    "OtpRequestResult",
    "PasswordResetResult",
    "PositionSample",
    "PositionUpdate",
]
