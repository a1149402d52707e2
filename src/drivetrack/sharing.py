"""Location sharing state machine.

``idle --start()--> requesting --granted--> active --stop()--> idle``

:class:`SharingController` is the only path from a position sample to
the realtime transport.
"""

from __future__ import annotations

import logging
from enum import StrEnum

from drivetrack.location import PositionSourceAdapter, Subscription
from drivetrack.models.bus import BusAssignment
from drivetrack.models.position import PositionSample, PositionUpdate
from drivetrack.transport import ConnectionState, TransportManager

_logger = logging.getLogger(__name__)


class SharingState(StrEnum):
    IDLE = "idle"
    REQUESTING = "requesting"
    ACTIVE = "active"


class SharingController:
    """Starts and stops position sharing and forwards samples.

    A sample is forwarded only while ``active`` and once a bus
    assignment is known; anything else is dropped, never queued.
    Speed is sent with 2 decimals or, when the platform has none,
    left out of the message.
    """

    def __init__(self, positions: PositionSourceAdapter, transport: TransportManager) -> None:
        self._positions = positions
        self._transport = transport
        self._state = SharingState.IDLE
        self._bus: BusAssignment | None = None
        self.subscription: Subscription | None = None
        self.last_sample: PositionSample | None = None
        self.samples_forwarded = 0
        self.samples_dropped = 0

    @property
    def state(self) -> SharingState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is SharingState.ACTIVE

    @property
    def bus_assignment(self) -> BusAssignment | None:
        return self._bus

    def set_bus_assignment(self, bus: BusAssignment | None) -> None:
        self._bus = bus

    async def start(self) -> None:
        """Begin sharing.

        No-op while already ``requesting`` or ``active``.

        Raises
        ------
        PermissionDeniedError
            Unchanged from the position source; the state returns to
            ``idle``, as it does for any other failure.
        PositionSourceError
            If the platform sources failed to start.
        """
        if self._state is not SharingState.IDLE:
            return
        self._set_state(SharingState.REQUESTING)
        try:
            subscription = await self._positions.start(self._on_sample)
        except BaseException:
            if self._state is SharingState.REQUESTING:
                self._set_state(SharingState.IDLE)
            raise

        if self._state is not SharingState.REQUESTING:
            # stop() arrived while permissions were pending.
            await self._positions.stop()
            return
        self.subscription = subscription
        self._set_state(SharingState.ACTIVE)

    async def stop(self) -> None:
        """Stop sharing. Safe in any state, including repeated calls."""
        if self._state is SharingState.IDLE:
            return
        self._set_state(SharingState.IDLE)
        self.subscription = None
        await self._positions.stop()
        self.last_sample = None

    async def _on_sample(self, sample: PositionSample) -> None:
        if self._state is not SharingState.ACTIVE:
            self.samples_dropped += 1
            return
        self.last_sample = sample
        if self._bus is None:
            self.samples_dropped += 1
            _logger.debug("No bus assignment yet, dropping sample")
            return

        sent = await self._transport.send(PositionUpdate.from_sample(sample))
        if sent:
            self.samples_forwarded += 1
            return
        self.samples_dropped += 1
        if self._state is SharingState.ACTIVE and self._transport.state is ConnectionState.DISCONNECTED:
            self._transport.request_reconnect()

    def _set_state(self, new: SharingState) -> None:
        if new is self._state:
            return
        _logger.info("Sharing %s -> %s", self._state, new)
        self._state = new
