"""Bus assignment model."""

from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator

from drivetrack.models._base import DriveTrackModel


class BusAssignment(DriveTrackModel):
    """The bus and route allotted to the logged-in driver.

    Parameters
    ----------
    bus_id : str
        Backend identifier of the bus.
    route_name : str
        Human-readable route name.
    """

    bus_id: str = Field(validation_alias=AliasChoices("bus_id", "busId"))
    route_name: str = Field(default="", validation_alias=AliasChoices("route_name", "routeName"))

    @field_validator("bus_id", "route_name", mode="before")
    @classmethod
    def _coerce_str(cls, value: object) -> str:
        return str(value).strip()
