"""Position acquisition: foreground watch plus background task.

The platform side is consumed through three small protocols
(:class:`PermissionGate`, :class:`PositionWatcher`,
:class:`BackgroundTaskRegistrar`).  :class:`PositionSourceAdapter` merges
both sources into a single stream of :class:`PositionSample` objects
under one :class:`Subscription`.

Samples from the two sources are not deduplicated: when both fire in the
same interval the consumer sees two samples.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import math
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Protocol

from pydantic import ValidationError

from drivetrack.config import DriveTrackConfig
from drivetrack.exceptions import PermissionDeniedError, PositionSourceError
from drivetrack.models.position import PositionSample

_logger = logging.getLogger(__name__)

_EARTH_RADIUS_M = 6_371_000.0


class SampleSource(StrEnum):
    FOREGROUND = "foreground"
    BACKGROUND = "background"


@dataclass(frozen=True)
class LocationOptions:
    """Sampling configuration shared by the foreground and background sources."""

    time_interval: float = 5.0
    distance_interval: float = 0.0
    high_accuracy: bool = True
    notification_title: str = "Drive Tracker"
    notification_body: str = "Sharing your location in the background"

    @classmethod
    def from_config(cls, config: DriveTrackConfig) -> LocationOptions:
        return cls(
            time_interval=config.sample_interval,
            distance_interval=config.distance_interval,
            high_accuracy=config.high_accuracy,
            notification_title=config.notification_title,
            notification_body=config.notification_body,
        )


RawPosition = PositionSample | Mapping[str, Any]
PositionCallback = Callable[[RawPosition], Awaitable[None]]
BackgroundHandler = Callable[[Sequence[RawPosition], BaseException | None], Awaitable[None]]
SampleHandler = Callable[[PositionSample], Awaitable[None]]


class PermissionGate(Protocol):
    async def request_foreground(self) -> bool:
        ...

    async def request_background(self) -> bool:
        ...


class WatchHandle(Protocol):
    def remove(self) -> None:
        ...


class PositionWatcher(Protocol):
    """Foreground position stream, active while the app is visible."""

    async def watch_position(
        self,
        options: LocationOptions,
        on_position: PositionCallback,
        on_error: Callable[[BaseException], None],
    ) -> WatchHandle:
        ...


class BackgroundTaskRegistrar(Protocol):
    """Named background location task, scheduled by the platform."""

    async def start_location_updates(
        self,
        task_name: str,
        options: LocationOptions,
        handler: BackgroundHandler,
    ) -> None:
        ...

    async def stop_location_updates(self, task_name: str) -> None:
        ...

    async def has_started(self, task_name: str) -> bool:
        ...


class PositionProvider(Protocol):
    async def current_position(self, *, high_accuracy: bool) -> RawPosition:
        ...


@dataclass
class Subscription:
    """The live foreground watch and background task of one sharing session."""

    id: int
    task_name: str
    watch: WatchHandle
    on_sample: SampleHandler
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    samples: dict[SampleSource, int] = field(
        default_factory=lambda: {SampleSource.FOREGROUND: 0, SampleSource.BACKGROUND: 0}
    )


class PositionSourceAdapter:
    """Owns the single position subscription.

    Parameters
    ----------
    permissions : PermissionGate
        Asked for foreground, then background permission on every start.
    watcher : PositionWatcher
        Foreground position source.
    registrar : BackgroundTaskRegistrar
        Background task scheduler.  It is handed
        :meth:`handle_background_locations`, which resolves the live
        subscription from this adapter on every delivery.
    options : LocationOptions
        Sampling configuration.
    task_name : str
        Background task registration name.
    """

    def __init__(
        self,
        permissions: PermissionGate,
        watcher: PositionWatcher,
        registrar: BackgroundTaskRegistrar,
        *,
        options: LocationOptions | None = None,
        task_name: str = "BACKGROUND_LOCATION_TASK",
    ) -> None:
        self._permissions = permissions
        self._watcher = watcher
        self._registrar = registrar
        self._options = options or LocationOptions()
        self._task_name = task_name
        self._subscription: Subscription | None = None
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    @property
    def subscription(self) -> Subscription | None:
        return self._subscription

    @property
    def is_active(self) -> bool:
        return self._subscription is not None

    @property
    def task_name(self) -> str:
        return self._task_name

    async def start(self, on_sample: SampleHandler) -> Subscription:
        """Request permissions and start both sources.

        Raises
        ------
        PermissionDeniedError
            With ``tier`` ``"foreground"`` or ``"background"``.  Nothing is
            registered in that case.
        PositionSourceError
            If the watch or the background task failed to start.  Anything
            already started is torn down again.
        """
        async with self._lock:
            if self._subscription is not None:
                return self._subscription

            if not await self._permissions.request_foreground():
                raise PermissionDeniedError("foreground")
            if not await self._permissions.request_background():
                raise PermissionDeniedError("background")

            sub_id = next(self._ids)

            async def on_position(raw: RawPosition) -> None:
                await self._deliver(raw, SampleSource.FOREGROUND, sub_id)

            try:
                watch = await self._watcher.watch_position(self._options, on_position, self._on_watch_error)
            except Exception as exc:
                raise PositionSourceError(f"Foreground position watch failed to start: {exc}") from exc

            subscription = Subscription(id=sub_id, task_name=self._task_name, watch=watch, on_sample=on_sample)
            self._subscription = subscription
            try:
                await self._registrar.start_location_updates(
                    self._task_name,
                    self._options,
                    self.handle_background_locations,
                )
            except Exception as exc:
                self._subscription = None
                self._remove_watch(watch)
                raise PositionSourceError(f"Background location task failed to start: {exc}") from exc

            _logger.info(
                "Position subscription %d started (interval=%.1fs task=%s)",
                sub_id,
                self._options.time_interval,
                self._task_name,
            )
            return subscription

    async def stop(self) -> None:
        """Stop both sources. Safe to call repeatedly."""
        async with self._lock:
            subscription, self._subscription = self._subscription, None
            if subscription is None:
                return
            self._remove_watch(subscription.watch)
            try:
                if await self._registrar.has_started(self._task_name):
                    await self._registrar.stop_location_updates(self._task_name)
            except Exception:
                _logger.debug("Background task %s already gone", self._task_name, exc_info=True)
            _logger.info("Position subscription %d stopped", subscription.id)

    async def handle_background_locations(
        self,
        locations: Sequence[RawPosition],
        error: BaseException | None = None,
    ) -> None:
        """Entry point for the background task, bound once at registration."""
        if error is not None:
            _logger.warning("Background location task error: %s", error)
            return
        subscription = self._subscription
        if subscription is None:
            _logger.debug("Background locations with no live subscription, ignored")
            return
        for raw in locations:
            await self._deliver(raw, SampleSource.BACKGROUND, subscription.id)

    def _on_watch_error(self, exc: BaseException) -> None:
        _logger.warning("Foreground position watch error: %s", exc)

    def _remove_watch(self, watch: WatchHandle) -> None:
        try:
            watch.remove()
        except Exception:
            _logger.debug("Foreground watch already removed", exc_info=True)

    async def _deliver(self, raw: RawPosition, source: SampleSource, sub_id: int) -> None:
        subscription = self._subscription
        if subscription is None or subscription.id != sub_id:
            return
        try:
            sample = raw if isinstance(raw, PositionSample) else PositionSample.model_validate(raw)
        except ValidationError as exc:
            _logger.warning("Discarding unparseable %s position: %s", source, exc.errors()[:1])
            return
        subscription.samples[source] += 1
        try:
            await subscription.on_sample(sample)
        except Exception:
            _logger.warning("Position consumer failed on %s sample", source, exc_info=True)


# ----------------------------------------------------------------------
# asyncio-driven platform implementations
# ----------------------------------------------------------------------


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres (haversine)."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2
    return _EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


class StaticPermissionGate:
    """Answers permission requests with fixed outcomes."""

    def __init__(self, *, foreground: bool = True, background: bool = True) -> None:
        self.foreground = foreground
        self.background = background
        self.requests: list[str] = []

    async def request_foreground(self) -> bool:
        self.requests.append("foreground")
        return self.foreground

    async def request_background(self) -> bool:
        self.requests.append("background")
        return self.background


class _TaskHandle:
    def __init__(self, task: asyncio.Task[None]) -> None:
        self._task = task

    def remove(self) -> None:
        self._task.cancel()


async def _poll(
    provider: PositionProvider,
    options: LocationOptions,
    emit: Callable[[RawPosition], Awaitable[None]],
    fail: Callable[[BaseException], Awaitable[None] | None],
) -> None:
    last: PositionSample | None = None
    while True:
        try:
            raw = await provider.current_position(high_accuracy=options.high_accuracy)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            result = fail(exc)
            if result is not None:
                await result
        else:
            if options.distance_interval <= 0:
                await emit(raw)
            else:
                sample = _parse(raw)
                if sample is None:
                    # Left for the adapter to log and discard.
                    await emit(raw)
                elif _moved_enough(sample, last, options.distance_interval):
                    last = sample
                    await emit(sample)
        await asyncio.sleep(options.time_interval)


def _parse(raw: RawPosition) -> PositionSample | None:
    if isinstance(raw, PositionSample):
        return raw
    try:
        return PositionSample.model_validate(raw)
    except ValidationError:
        return None


def _moved_enough(sample: PositionSample, last: PositionSample | None, threshold: float) -> bool:
    if last is None:
        return True
    return distance_m(last.latitude, last.longitude, sample.latitude, sample.longitude) >= threshold


class PollingPositionWatcher:
    """Foreground watch that polls a :class:`PositionProvider` on the event loop."""

    def __init__(self, provider: PositionProvider) -> None:
        self._provider = provider

    async def watch_position(
        self,
        options: LocationOptions,
        on_position: PositionCallback,
        on_error: Callable[[BaseException], None],
    ) -> WatchHandle:
        task = asyncio.create_task(_poll(self._provider, options, on_position, on_error), name="drivetrack-watch")
        return _TaskHandle(task)


class AsyncioTaskRegistrar:
    """Process-local background task scheduler.

    Stands in for the OS scheduler: each registered name runs a polling
    loop that hands batches of positions to its handler.
    """

    def __init__(self, provider: PositionProvider) -> None:
        self._provider = provider
        self._tasks: dict[str, asyncio.Task[None]] = {}

    async def start_location_updates(
        self,
        task_name: str,
        options: LocationOptions,
        handler: BackgroundHandler,
    ) -> None:
        await self.stop_location_updates(task_name)

        async def emit(raw: RawPosition) -> None:
            await handler([raw], None)

        async def fail(exc: BaseException) -> None:
            await handler([], exc)

        self._tasks[task_name] = asyncio.create_task(
            _poll(self._provider, options, emit, fail),
            name=f"drivetrack-task-{task_name}",
        )

    async def stop_location_updates(self, task_name: str) -> None:
        task = self._tasks.pop(task_name, None)
        if task is not None:
            task.cancel()

    async def has_started(self, task_name: str) -> bool:
        task = self._tasks.get(task_name)
        return task is not None and not task.done()
