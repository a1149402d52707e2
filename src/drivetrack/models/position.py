"""Position sample and outbound position update models."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from drivetrack._normalize import non_negative_or_none, parse_epoch, safe_float


class PositionSample(BaseModel):
    """One position fix from the foreground watch or the background task.

    Accepts the flat shape as well as the platform shape with a nested
    ``coords`` object (``{"coords": {...}, "timestamp": <ms>}``).

    Parameters
    ----------
    latitude : float
        Degrees, WGS84.
    longitude : float
        Degrees, WGS84.
    speed : float or None
        Ground speed in metres per second.  ``None`` when the platform
        reports no speed (missing, NaN, or the negative "invalid" marker).
    timestamp : datetime
        UTC time of the fix.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    latitude: float = Field(ge=-90.0, le=90.0, validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(ge=-180.0, le=180.0, validation_alias=AliasChoices("longitude", "lng", "lon"))
    speed: float | None = Field(default=None, validation_alias=AliasChoices("speed", "speedMetersPerSecond"))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="before")
    @classmethod
    def _merge_coords(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        coords = values.get("coords")
        if not isinstance(coords, dict):
            return values
        merged = {k: v for k, v in values.items() if k != "coords"}
        merged.update(coords)
        return merged

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _coerce_coordinate(cls, value: Any) -> Any:
        parsed = safe_float(value)
        return value if parsed is None else parsed

    @field_validator("speed", mode="before")
    @classmethod
    def _coerce_speed(cls, value: Any) -> float | None:
        return non_negative_or_none(value)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> Any:
        parsed = parse_epoch(value)
        return value if parsed is None else parsed


class PositionUpdate(BaseModel):
    """Outbound realtime message for one sample.

    Coordinates are fixed 6-decimal strings and speed a fixed 2-decimal
    string, the precision the backend stores.  When speed is unavailable
    the ``speed`` key is left out of the message entirely.
    """

    model_config = ConfigDict(frozen=True)

    latitude: str
    longitude: str
    speed: str | None = None

    @classmethod
    def from_sample(cls, sample: PositionSample) -> PositionUpdate:
        return cls(
            latitude=f"{sample.latitude:.6f}",
            longitude=f"{sample.longitude:.6f}",
            speed=None if sample.speed is None else f"{sample.speed:.2f}",
        )

    def to_message(self) -> dict[str, str]:
        return self.model_dump(exclude_none=True)
