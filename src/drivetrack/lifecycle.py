"""App start and logout sequencing."""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum

from drivetrack._api import account as _account_api
from drivetrack._api import bus as _bus_api
from drivetrack._http import Transport
from drivetrack.exceptions import DriveTrackError, SessionInvalidError
from drivetrack.models.account import PasswordResetResult
from drivetrack.models.bus import BusAssignment
from drivetrack.session import CredentialStore, Session
from drivetrack.sharing import SharingController
from drivetrack.transport import TransportManager

_logger = logging.getLogger(__name__)


class StartupDecision(StrEnum):
    RESUME = "resume"
    FORCE_LOGIN = "force_login"


class SessionLifecycleController:
    """Decides resume vs. login at start and tears everything down on logout."""

    def __init__(
        self,
        credentials: CredentialStore,
        http: Transport,
        transport: TransportManager,
        sharing: SharingController,
        *,
        logout_timeout: float = 10.0,
    ) -> None:
        self._credentials = credentials
        self._http = http
        self._transport = transport
        self._sharing = sharing
        self._logout_timeout = logout_timeout
        self._bus: BusAssignment | None = None

    @property
    def bus_assignment(self) -> BusAssignment | None:
        return self._bus

    async def on_app_start(self) -> StartupDecision:
        try:
            valid = await self._credentials.is_valid()
        except (DriveTrackError, OSError):
            _logger.warning("Session check failed, forcing login", exc_info=True)
            return StartupDecision.FORCE_LOGIN
        decision = StartupDecision.RESUME if valid else StartupDecision.FORCE_LOGIN
        _logger.info("App start: %s", decision)
        return decision

    async def login(self, driver_id: str, password: str) -> Session:
        """Authenticate and persist the issued session.

        Raises
        ------
        AuthenticationError
            Wrong credentials.
        NetworkError
            Backend unreachable; the caller may retry.
        """
        result = await _account_api.login(self._http, driver_id, password)
        self._bus = None
        return await self._credentials.save(result.session_id)

    async def complete_password_reset(
        self,
        driver_id: str,
        email: str,
        password: str,
        otp: str,
    ) -> PasswordResetResult:
        """Set a new password with the emailed OTP.

        When the backend signs the driver in as part of the reset, the
        returned session is persisted.
        """
        result = await _account_api.verify_password_otp(self._http, driver_id, email, password, otp)
        if result.session_id is not None:
            await self._credentials.save(result.session_id)
        return result

    async def load_bus_assignment(self, *, refresh: bool = False) -> BusAssignment:
        """Fetch the driver's bus once and hand it to the sharing controller.

        Raises
        ------
        SessionInvalidError
            No valid session is stored.
        NetworkError
            Backend unreachable; the caller may retry.
        """
        if self._bus is not None and not refresh:
            return self._bus
        token = await self._credentials.get_token()
        if token is None:
            raise SessionInvalidError("Session expired")
        bus = await _bus_api.fetch_assigned_bus(self._http, token)
        self._bus = bus
        self._sharing.set_bus_assignment(bus)
        return bus

    async def resume(self) -> BusAssignment:
        """Load the bus assignment and open the realtime connection."""
        bus = await self.load_bus_assignment()
        await self._transport.connect()
        return bus

    async def request_account_deletion(self) -> None:
        token = await self._credentials.get_token()
        if token is None:
            raise SessionInvalidError("Session expired")
        await _account_api.request_account_deletion(self._http, token)
        _logger.info("Account deletion requested")

    async def on_logout(self) -> None:
        """Log out; always completes locally.

        The backend call is best effort.  Sharing stops before the
        transport closes, and the credential goes last.
        """
        token: str | None = None
        try:
            session = await self._credentials.load()
            token = session.token if session is not None else None
        except (DriveTrackError, OSError):
            _logger.warning("Could not read session for logout", exc_info=True)

        if token is not None:
            try:
                await asyncio.wait_for(_account_api.logout(self._http, token), self._logout_timeout)
            except Exception as exc:
                _logger.warning("Backend logout failed, continuing locally: %s", exc)

        for step, teardown in (
            ("stop sharing", self._sharing.stop),
            ("close transport", self._transport.close),
            ("clear credentials", self._credentials.clear),
        ):
            try:
                await teardown()
            except Exception:
                _logger.warning("Logout could not %s", step, exc_info=True)
        self._bus = None
        self._sharing.set_bus_assignment(None)
        _logger.info("Logged out")
