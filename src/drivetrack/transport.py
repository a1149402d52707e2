"""Realtime WebSocket connection to the backend.

:class:`TransportManager` owns the single live socket.  It authenticates
with the session token as a query parameter, reports its
:class:`ConnectionState`, and reconnects on a constant interval only
while a consumer (the sharing controller) reports itself active.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Protocol
from urllib.parse import urlencode

import aiohttp

from drivetrack._redact import redact_url
from drivetrack.config import DriveTrackConfig
from drivetrack.exceptions import SessionInvalidError, TransportError
from drivetrack.models.position import PositionUpdate
from drivetrack.session import CredentialStore

_logger = logging.getLogger(__name__)


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class WebSocketLike(Protocol):
    """The subset of :class:`aiohttp.ClientWebSocketResponse` the manager uses."""

    @property
    def closed(self) -> bool:
        ...

    async def send_str(self, data: str) -> None:
        ...

    async def close(self) -> Any:
        ...

    def exception(self) -> BaseException | None:
        ...

    def __aiter__(self) -> AsyncIterator[aiohttp.WSMessage]:
        ...


WsConnector = Callable[[str], Awaitable[WebSocketLike]]


def aiohttp_connector(http_session: aiohttp.ClientSession, *, heartbeat: float | None = None) -> WsConnector:
    """Build a connector that opens sockets on *http_session*."""

    async def _connect(url: str) -> WebSocketLike:
        return await http_session.ws_connect(url, heartbeat=heartbeat)

    return _connect


@dataclass
class TransportStats:
    """Connection telemetry, reset only with the manager."""

    connect_attempts: int = 0
    reconnect_attempts: int = 0
    messages_sent: int = 0
    messages_dropped: int = 0
    inbound_messages: int = 0
    malformed_messages: int = 0
    last_error: TransportError | None = None
    last_connected_at: datetime | None = None


def _never_active() -> bool:
    return False


class TransportManager:
    """Maintains at most one authenticated realtime connection.

    Parameters
    ----------
    config : DriveTrackConfig
        Supplies ``ws_url``, ``reconnect_delay`` and the handshake timeout.
    credentials : CredentialStore
        Read for the token on every connection attempt.
    connector : callable
        ``async (url) -> socket``; see :func:`aiohttp_connector`.
    on_state_change : callable, optional
        ``(old, new)`` called on every state transition.
    on_session_invalid : callable, optional
        Called when a connection attempt finds no valid session.
    on_message : callable, optional
        Receives each inbound message that parsed as JSON.
    """

    def __init__(
        self,
        config: DriveTrackConfig,
        credentials: CredentialStore,
        *,
        connector: WsConnector,
        on_state_change: Callable[[ConnectionState, ConnectionState], None] | None = None,
        on_session_invalid: Callable[[], None] | None = None,
        on_message: Callable[[Any], None] | None = None,
    ) -> None:
        self._config = config
        self._credentials = credentials
        self._connector = connector
        self._on_state_change = on_state_change
        self._on_session_invalid = on_session_invalid
        self._on_message = on_message
        self._consumer_active: Callable[[], bool] = _never_active

        self._state = ConnectionState.DISCONNECTED
        self._ws: WebSocketLike | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        # Bumped by close(); work started under an older generation is discarded.
        self._generation = 0
        self._connected = asyncio.Event()
        self.stats = TransportStats()

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def set_consumer_probe(self, probe: Callable[[], bool]) -> None:
        """Install the callable answering "does anything need this connection?"."""
        self._consumer_active = probe

    async def wait_connected(self, timeout: float | None = None) -> bool:
        """Wait until the connection is up; ``False`` on timeout."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
            return True
        except TimeoutError:
            return False

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection unless one is already up or being opened.

        Raises
        ------
        SessionInvalidError
            If no valid session token is stored.  The manager stays
            disconnected and does not retry.
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return
        self._cancel_reconnect()
        generation = self._generation

        token = await self._credentials.get_token()
        if generation != self._generation:
            return
        if not token:
            self._set_state(ConnectionState.DISCONNECTED)
            self._signal_session_invalid()
            raise SessionInvalidError("No valid session for realtime connection")
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return

        self._set_state(ConnectionState.CONNECTING)
        self.stats.connect_attempts += 1
        url = self._build_url(token)
        _logger.debug("Opening realtime connection %s", redact_url(url))

        try:
            ws = await asyncio.wait_for(self._connector(url), timeout=self._config.http_timeout)
        except (aiohttp.ClientError, OSError, TimeoutError) as exc:
            if generation != self._generation:
                return
            self.stats.last_error = TransportError(f"handshake failed: {exc!r}")
            _logger.warning("Realtime handshake failed: %s", exc)
            self._set_state(ConnectionState.DISCONNECTED)
            self._reconnect_if_consumer_active()
            return
        except BaseException:
            # Cancelled, or a connector failure outside the network errors.
            if generation == self._generation:
                self._set_state(ConnectionState.DISCONNECTED)
            raise

        if generation != self._generation:
            # close() ran while the handshake was in flight.
            await self._close_socket(ws)
            return

        self._ws = ws
        self.stats.last_connected_at = datetime.now(UTC)
        self._set_state(ConnectionState.CONNECTED)
        self._reader_task = asyncio.create_task(self._read_loop(ws, generation), name="drivetrack-ws-reader")

    async def close(self) -> None:
        """Tear down the socket and any pending reconnect. Always ends disconnected."""
        self._generation += 1
        self._cancel_reconnect()
        reader, self._reader_task = self._reader_task, None
        ws, self._ws = self._ws, None
        self._set_state(ConnectionState.DISCONNECTED)

        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
            except Exception:
                _logger.debug("Realtime reader ended with an error", exc_info=True)
        if ws is not None:
            await self._close_socket(ws)

    def request_reconnect(self) -> None:
        """Schedule one reconnect attempt if disconnected with an active consumer."""
        if self._state is not ConnectionState.DISCONNECTED or self.reconnect_pending:
            return
        self._reconnect_if_consumer_active()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send(self, update: PositionUpdate | Mapping[str, Any]) -> bool:
        """Send one update, best effort.

        Returns ``False`` when the update was dropped because the
        connection is not up or the write failed.  Never raises and never
        changes the connection state.
        """
        ws = self._ws
        if self._state is not ConnectionState.CONNECTED or ws is None or ws.closed:
            self.stats.messages_dropped += 1
            _logger.debug("Dropping update, connection is %s", self._state)
            return False

        message = update.to_message() if isinstance(update, PositionUpdate) else dict(update)
        try:
            await ws.send_str(json.dumps(message, separators=(",", ":")))
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            self.stats.messages_dropped += 1
            self.stats.last_error = TransportError(f"send failed: {exc!r}")
            _logger.warning("Realtime send failed: %s", exc)
            return False

        self.stats.messages_sent += 1
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_url(self, token: str) -> str:
        separator = "&" if "?" in self._config.ws_url else "?"
        return f"{self._config.ws_url}{separator}{urlencode({'session_id': token})}"

    def _set_state(self, new: ConnectionState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        if new is ConnectionState.CONNECTED:
            self._connected.set()
        else:
            self._connected.clear()
        _logger.info("Realtime connection %s -> %s", old, new)
        if self._on_state_change is not None:
            try:
                self._on_state_change(old, new)
            except Exception:
                _logger.debug("on_state_change callback failed", exc_info=True)

    def _signal_session_invalid(self) -> None:
        _logger.warning("Realtime connection needs re-authentication")
        if self._on_session_invalid is not None:
            try:
                self._on_session_invalid()
            except Exception:
                _logger.debug("on_session_invalid callback failed", exc_info=True)

    def _is_consumer_active(self) -> bool:
        try:
            return bool(self._consumer_active())
        except Exception:
            _logger.debug("Consumer probe failed", exc_info=True)
            return False

    def _reconnect_if_consumer_active(self) -> None:
        if not self._is_consumer_active():
            self._set_state(ConnectionState.DISCONNECTED)
            return
        self._set_state(ConnectionState.RECONNECTING)
        self._cancel_reconnect()
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(self._config.reconnect_delay),
            name="drivetrack-ws-reconnect",
        )

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        if self._state is not ConnectionState.RECONNECTING:
            return
        if not self._is_consumer_active():
            self._set_state(ConnectionState.DISCONNECTED)
            return
        self.stats.reconnect_attempts += 1
        _logger.debug("Reconnect attempt %d", self.stats.reconnect_attempts)
        generation = self._generation
        try:
            await self.connect()
        except SessionInvalidError:
            _logger.info("Reconnect abandoned, session is no longer valid")
        except Exception as exc:
            self.stats.last_error = TransportError(f"reconnect failed: {exc!r}")
            _logger.warning("Reconnect attempt failed: %s", exc)
            if generation != self._generation:
                return
            self._set_state(ConnectionState.DISCONNECTED)
            self._reconnect_if_consumer_active()

    async def _read_loop(self, ws: WebSocketLike, generation: int) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_inbound(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._handle_inbound(msg.data.decode("utf-8", errors="replace"))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self.stats.last_error = TransportError(f"socket error: {ws.exception()!r}")
                    _logger.warning("Realtime socket error: %s", ws.exception())
                    break
        except (aiohttp.ClientError, ConnectionError) as exc:
            self.stats.last_error = TransportError(f"read failed: {exc!r}")
            _logger.warning("Realtime read failed: %s", exc)

        if generation != self._generation:
            return
        await self._on_connection_lost(ws)

    async def _on_connection_lost(self, ws: WebSocketLike) -> None:
        if self._ws is ws:
            self._ws = None
        self._reader_task = None
        _logger.info("Realtime connection lost (code=%s)", getattr(ws, "close_code", None))
        self._reconnect_if_consumer_active()
        await self._close_socket(ws)

    def _handle_inbound(self, text: str) -> None:
        self.stats.inbound_messages += 1
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            self.stats.malformed_messages += 1
            _logger.debug("Discarding malformed realtime message: %.120s", text)
            return
        _logger.debug("Realtime message: %s", data)
        if self._on_message is not None:
            try:
                self._on_message(data)
            except Exception:
                _logger.debug("on_message callback failed", exc_info=True)

    async def _close_socket(self, ws: WebSocketLike) -> None:
        if ws.closed:
            return
        try:
            await ws.close()
        except Exception:
            _logger.debug("Realtime socket close failed", exc_info=True)
