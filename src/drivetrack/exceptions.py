"""Custom exception hierarchy for drivetrack."""

from __future__ import annotations


class DriveTrackError(Exception):
    """Base exception for all drivetrack errors."""


class DriveTrackConfigError(DriveTrackError):
    """Invalid or missing configuration."""


class InvalidInputError(DriveTrackError, ValueError):
    """A caller passed a value the operation cannot accept (e.g. an empty token)."""


class StorageCorruptionError(DriveTrackError):
    """A persisted record could not be decoded or authenticated.

    Never surfaced past the credential store, which deletes the record
    and treats it as absent.
    """


class SessionInvalidError(DriveTrackError):
    """No usable session token: missing, expired, or removed.

    Callers should send the user back through login.
    """


class PermissionDeniedError(DriveTrackError):
    """Location permission refused by the user.

    ``tier`` is ``"foreground"`` or ``"background"``.
    """

    def __init__(self, tier: str, message: str | None = None) -> None:
        self.tier = tier
        super().__init__(message or f"{tier} location permission denied")


class TransportError(DriveTrackError):
    """Realtime socket failure (handshake, send, or inbound parse)."""


class NetworkError(DriveTrackError):
    """HTTP-level failure (unreachable, timeout, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class ApiError(DriveTrackError):
    """Backend answered but reported an application-level failure."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        endpoint: str = "",
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        super().__init__(message)


class AuthenticationError(ApiError):
    """Login rejected (invalid driver ID/password or no session issued)."""


class PositionSourceError(DriveTrackError):
    """The platform position watch or background task could not be started."""
