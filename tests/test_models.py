"""Tests for payload model parsing."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from drivetrack.models.account import LoginResult, PasswordResetResult
from drivetrack.models.bus import BusAssignment
from drivetrack.models.position import PositionSample, PositionUpdate

# ------------------------------------------------------------------
# PositionSample
# ------------------------------------------------------------------


class TestPositionSample:
    def test_platform_shape_with_coords(self) -> None:
        sample = PositionSample.model_validate(
            {
                "coords": {"latitude": 12.345678, "longitude": 77.123456, "speed": 4.2, "accuracy": 5},
                "timestamp": 1_700_000_000_000,
            }
        )
        assert sample.latitude == 12.345678
        assert sample.longitude == 77.123456
        assert sample.speed == 4.2
        assert sample.timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC)

    def test_short_aliases_and_string_values(self) -> None:
        sample = PositionSample.model_validate({"lat": "12.5", "lng": "77.25", "timestamp": 1_700_000_000})
        assert (sample.latitude, sample.longitude) == (12.5, 77.25)
        assert sample.timestamp.year == 2023

    @pytest.mark.parametrize("speed", [None, -1, "-1", float("nan"), "", "abc"])
    def test_unusable_speed_becomes_none(self, speed: object) -> None:
        sample = PositionSample.model_validate({"latitude": 1.0, "longitude": 2.0, "speed": speed})
        assert sample.speed is None

    def test_zero_speed_is_kept(self) -> None:
        assert PositionSample(latitude=1.0, longitude=2.0, speed=0).speed == 0.0

    @pytest.mark.parametrize(
        "payload",
        [
            {"latitude": 91.0, "longitude": 0.0},
            {"latitude": 0.0, "longitude": -180.5},
            {"latitude": "north", "longitude": 0.0},
            {"longitude": 0.0},
        ],
    )
    def test_invalid_coordinates_rejected(self, payload: dict[str, object]) -> None:
        with pytest.raises(ValidationError):
            PositionSample.model_validate(payload)

    def test_missing_timestamp_defaults_to_now(self) -> None:
        before = datetime.now(UTC)
        sample = PositionSample(latitude=1.0, longitude=2.0)
        assert sample.timestamp >= before


# ------------------------------------------------------------------
# PositionUpdate
# ------------------------------------------------------------------


class TestPositionUpdate:
    def test_rounding(self) -> None:
        update = PositionUpdate.from_sample(PositionSample(latitude=12.3456789, longitude=-77.0000004, speed=12.345))
        assert update.latitude == "12.345679"
        assert update.longitude == "-77.000000"
        assert update.speed in {"12.35", "12.34"}
        assert len(update.speed.split(".")[1]) == 2

    def test_whole_numbers_keep_fixed_precision(self) -> None:
        update = PositionUpdate.from_sample(PositionSample(latitude=10, longitude=20, speed=3))
        assert update.to_message() == {"latitude": "10.000000", "longitude": "20.000000", "speed": "3.00"}

    def test_speed_omitted_when_unknown(self) -> None:
        update = PositionUpdate.from_sample(PositionSample(latitude=12.345678, longitude=77.123456, speed=None))
        assert update.to_message() == {"latitude": "12.345678", "longitude": "77.123456"}


# ------------------------------------------------------------------
# Backend responses
# ------------------------------------------------------------------


class TestBusAssignment:
    def test_numeric_id_coerced(self) -> None:
        bus = BusAssignment.model_validate({"bus_id": 7, "route_name": "Loop"})
        assert bus.bus_id == "7"
        assert bus.raw == {"bus_id": 7, "route_name": "Loop"}

    def test_placeholder_route_uses_default(self) -> None:
        bus = BusAssignment.model_validate({"bus_id": "B1", "route_name": "--"})
        assert bus.route_name == ""


class TestAccountResults:
    def test_login_status(self) -> None:
        assert LoginResult.model_validate({"login_status": "valid", "session_id": "t"}).is_valid
        assert not LoginResult.model_validate({"login_status": "invalid"}).is_valid

    def test_blank_session_id_is_none(self) -> None:
        assert LoginResult.model_validate({"login_status": "valid", "session_id": "  "}).session_id is None

    def test_password_reset_success(self) -> None:
        result = PasswordResetResult.model_validate({"status": "success", "session_id": 123})
        assert result.success
        assert result.session_id == "123"
