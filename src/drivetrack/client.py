"""High-level async client wiring the driver location-sharing components."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

import aiohttp

from drivetrack._api import account as _account_api
from drivetrack._http import HttpTransport
from drivetrack.config import DriveTrackConfig
from drivetrack.exceptions import DriveTrackError
from drivetrack.lifecycle import SessionLifecycleController, StartupDecision
from drivetrack.location import (
    BackgroundTaskRegistrar,
    LocationOptions,
    PermissionGate,
    PositionSourceAdapter,
    PositionWatcher,
)
from drivetrack.models.account import OtpRequestResult
from drivetrack.models.bus import BusAssignment
from drivetrack.session import CredentialStore, Session
from drivetrack.sharing import SharingController, SharingState
from drivetrack.storage import EncryptedFileStorage, MemorySecureStorage, SecureStorage
from drivetrack.transport import ConnectionState, TransportManager, WsConnector, aiohttp_connector

_logger = logging.getLogger(__name__)


def _default_storage(config: DriveTrackConfig) -> SecureStorage:
    if config.storage_dir is None:
        return MemorySecureStorage()
    return EncryptedFileStorage(config.storage_dir, config.storage_key)


class DriveTrackClient:
    """Async client for a driver's location-sharing session.

    Usage::

        async with DriveTrackClient(config, permissions=gate, watcher=w, registrar=r) as client:
            if await client.on_app_start() is StartupDecision.FORCE_LOGIN:
                await client.login(driver_id, password)
            await client.resume()
            await client.start_sharing()
    """

    def __init__(
        self,
        config: DriveTrackConfig,
        *,
        permissions: PermissionGate,
        watcher: PositionWatcher,
        registrar: BackgroundTaskRegistrar,
        storage: SecureStorage | None = None,
        session: aiohttp.ClientSession | None = None,
        connector: WsConnector | None = None,
        clock: Callable[[], float] = time.time,
        on_connection_change: Callable[[ConnectionState, ConnectionState], None] | None = None,
        on_session_invalid: Callable[[], None] | None = None,
        on_message: Callable[[Any], None] | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._connector = connector
        self._on_connection_change = on_connection_change
        self._on_session_invalid = on_session_invalid
        self._on_message = on_message

        self.credentials = CredentialStore(
            storage if storage is not None else _default_storage(config),
            ttl=config.session_ttl,
            clock=clock,
        )
        self.positions = PositionSourceAdapter(
            permissions,
            watcher,
            registrar,
            options=LocationOptions.from_config(config),
            task_name=config.background_task_name,
        )
        self._http: HttpTransport | None = None
        self._transport: TransportManager | None = None
        self._sharing: SharingController | None = None
        self._lifecycle: SessionLifecycleController | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> DriveTrackClient:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self._http = HttpTransport(self._config, self._http_session)
        connector = self._connector or aiohttp_connector(self._http_session, heartbeat=self._config.ws_heartbeat)
        self._transport = TransportManager(
            self._config,
            self.credentials,
            connector=connector,
            on_state_change=self._on_connection_change,
            on_session_invalid=self._on_session_invalid,
            on_message=self._on_message,
        )
        sharing = SharingController(self.positions, self._transport)
        self._transport.set_consumer_probe(lambda: sharing.is_active)
        self._sharing = sharing
        self._lifecycle = SessionLifecycleController(
            self.credentials,
            self._http,
            self._transport,
            sharing,
            logout_timeout=self._config.http_timeout,
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._sharing is not None:
            await self._sharing.stop()
        if self._transport is not None:
            await self._transport.close()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._http = None
        self._transport = None
        self._sharing = None
        self._lifecycle = None

    # ------------------------------------------------------------------
    # Component access
    # ------------------------------------------------------------------

    def _require_lifecycle(self) -> SessionLifecycleController:
        if self._lifecycle is None:
            raise DriveTrackError("Client not initialized. Use 'async with DriveTrackClient(...) as client:'")
        return self._lifecycle

    @property
    def transport(self) -> TransportManager:
        if self._transport is None:
            raise DriveTrackError("Client not initialized. Use 'async with DriveTrackClient(...) as client:'")
        return self._transport

    @property
    def sharing(self) -> SharingController:
        if self._sharing is None:
            raise DriveTrackError("Client not initialized. Use 'async with DriveTrackClient(...) as client:'")
        return self._sharing

    @property
    def connection_state(self) -> ConnectionState:
        return self.transport.state

    @property
    def sharing_state(self) -> SharingState:
        return self.sharing.state

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def on_app_start(self) -> StartupDecision:
        return await self._require_lifecycle().on_app_start()

    async def login(self, driver_id: str, password: str) -> Session:
        return await self._require_lifecycle().login(driver_id, password)

    async def request_password_otp(self, driver_id: str, email: str) -> OtpRequestResult:
        if self._http is None:
            raise DriveTrackError("Client not initialized. Use 'async with DriveTrackClient(...) as client:'")
        return await _account_api.request_password_otp(self._http, driver_id, email)

    async def complete_password_reset(self, driver_id: str, email: str, password: str, otp: str) -> None:
        await self._require_lifecycle().complete_password_reset(driver_id, email, password, otp)

    async def resume(self) -> BusAssignment:
        return await self._require_lifecycle().resume()

    async def logout(self) -> None:
        await self._require_lifecycle().on_logout()

    async def request_account_deletion(self) -> None:
        await self._require_lifecycle().request_account_deletion()

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    async def start_sharing(self) -> None:
        """Start sharing and, if needed, open the realtime connection."""
        await self.sharing.start()
        if self.sharing.is_active and self.transport.state is ConnectionState.DISCONNECTED:
            await self.transport.connect()

    async def stop_sharing(self) -> None:
        await self.sharing.stop()

    async def run_until_stopped(self, poll: float = 1.0) -> None:
        """Block while sharing is active."""
        while self.sharing.is_active:
            await asyncio.sleep(poll)
