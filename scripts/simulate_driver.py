#!/usr/bin/env python3
"""Stream simulated driver positions through drivetrack.

Logs in (or resumes a stored session), fetches the allotted bus,
opens the realtime connection and shares a simulated position that
moves along a straight line.  Useful for exercising the backend and
watching reconnect behaviour without a phone.

Usage
-----
Set environment variables and run::

    export DRIVETRACK_DRIVER_ID="D-17"
    export DRIVETRACK_PASSWORD="your-password"
    export DRIVETRACK_STORAGE_DIR="$HOME/.drivetrack"
    python scripts/simulate_driver.py --duration 120

Options::

    --start LAT,LNG      Starting point (default: 12.971599,77.594566)
    --speed M/S          Simulated ground speed (default: 8.0)
    --heading DEG        Direction of travel, 0 = north (default: 90)
    --no-speed           Report positions without a speed reading
    --duration SECONDS   Stop after this long (default: run until Ctrl-C)
    --logout             Log out when done instead of keeping the session
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import math
import os
import sys
from pathlib import Path

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from drivetrack import (  # noqa: E402
    AsyncioTaskRegistrar,
    ConnectionState,
    DriveTrackClient,
    DriveTrackConfig,
    DriveTrackError,
    PollingPositionWatcher,
    PositionSample,
    StartupDecision,
    StaticPermissionGate,
)

_EARTH_RADIUS_M = 6_371_000.0


class SimulatedPositionProvider:
    """Dead-reckons a position from a start point, heading and speed."""

    def __init__(self, lat: float, lng: float, *, speed: float, heading: float, report_speed: bool = True) -> None:
        self._lat = lat
        self._lng = lng
        self._speed = speed
        self._heading = math.radians(heading)
        self._report_speed = report_speed
        self._last: float | None = None

    async def current_position(self, *, high_accuracy: bool) -> PositionSample:
        now = asyncio.get_running_loop().time()
        if self._last is not None:
            travelled = self._speed * (now - self._last)
            self._lat += math.degrees(travelled * math.cos(self._heading) / _EARTH_RADIUS_M)
            self._lng += math.degrees(
                travelled * math.sin(self._heading) / (_EARTH_RADIUS_M * math.cos(math.radians(self._lat)))
            )
        self._last = now
        return PositionSample(
            latitude=self._lat,
            longitude=self._lng,
            speed=self._speed if self._report_speed else None,
        )


def _parse_point(value: str) -> tuple[float, float]:
    try:
        lat_s, lng_s = value.split(",", 1)
        return float(lat_s), float(lng_s)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected LAT,LNG (got {value!r})") from exc


def _on_connection_change(old: ConnectionState, new: ConnectionState) -> None:
    print(f"  connection: {old} -> {new}")


def _on_session_invalid() -> None:
    print("  session expired or missing, log in again", file=sys.stderr)


async def run(args: argparse.Namespace) -> int:
    config = DriveTrackConfig.from_env()
    lat, lng = args.start
    provider = SimulatedPositionProvider(
        lat,
        lng,
        speed=args.speed,
        heading=args.heading,
        report_speed=not args.no_speed,
    )

    async with DriveTrackClient(
        config,
        permissions=StaticPermissionGate(),
        watcher=PollingPositionWatcher(provider),
        registrar=AsyncioTaskRegistrar(provider),
        on_connection_change=_on_connection_change,
        on_session_invalid=_on_session_invalid,
        on_message=lambda payload: print(f"  inbound: {payload}"),
    ) as client:
        if await client.on_app_start() is StartupDecision.FORCE_LOGIN:
            driver_id = os.environ.get("DRIVETRACK_DRIVER_ID", "")
            password = os.environ.get("DRIVETRACK_PASSWORD", "")
            if not driver_id or not password:
                print("No stored session; set DRIVETRACK_DRIVER_ID and DRIVETRACK_PASSWORD", file=sys.stderr)
                return 2
            await client.login(driver_id, password)
            print(f"Logged in as {driver_id}")
        else:
            print("Resuming stored session")

        bus = await client.resume()
        print(f"Bus {bus.bus_id} on route {bus.route_name or '-'}")

        await client.start_sharing()
        print(f"Sharing every {config.sample_interval:g}s, Ctrl-C to stop")

        try:
            if args.duration:
                await asyncio.wait_for(client.run_until_stopped(), timeout=args.duration)
            else:
                await client.run_until_stopped()
        except TimeoutError:
            pass
        finally:
            stats = client.transport.stats
            print(
                f"Sent {stats.messages_sent}, dropped {stats.messages_dropped}, "
                f"reconnect attempts {stats.reconnect_attempts}"
            )
            if args.logout:
                await client.logout()
                print("Logged out")
            else:
                await client.stop_sharing()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Share a simulated driver position through drivetrack.")
    parser.add_argument("--start", type=_parse_point, default=(12.971599, 77.594566), help="Starting LAT,LNG")
    parser.add_argument("--speed", type=float, default=8.0, help="Ground speed in m/s")
    parser.add_argument("--heading", type=float, default=90.0, help="Heading in degrees, 0 = north")
    parser.add_argument("--no-speed", action="store_true", help="Report positions without speed")
    parser.add_argument("--duration", type=float, default=None, help="Stop after SECONDS")
    parser.add_argument("--logout", action="store_true", help="Log out when done")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        code = 130
    except DriveTrackError as exc:
        print(f"error: {exc}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
