"""Assigned bus endpoint.

Endpoint:
  - /yus/get-allotted-bus
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from drivetrack._http import Transport
from drivetrack.exceptions import ApiError
from drivetrack.models.bus import BusAssignment

_logger = logging.getLogger(__name__)

ENDPOINT = "/yus/get-allotted-bus"


async def fetch_assigned_bus(transport: Transport, token: str) -> BusAssignment:
    """Fetch the bus allotted to the driver owning *token*.

    Raises
    ------
    NetworkError
        If the backend cannot be reached or answers non-2xx.
    ApiError
        If the response carries no bus.
    """
    response = await transport.get_json(ENDPOINT, token=token)
    try:
        bus = BusAssignment.model_validate(response)
    except ValidationError as exc:
        raise ApiError("No bus assigned to this driver", code="no_bus", endpoint=ENDPOINT) from exc
    _logger.debug("Assigned bus_id=%s route=%s", bus.bus_id, bus.route_name)
    return bus
