"""Base model for backend and platform payloads.

Every payload model inherits from :class:`DriveTrackModel` which:

* strips placeholder values (``None``, ``""``, ``"--"``, NaN) so the
  field default is used instead, and
* stashes the original payload dict in ``raw``.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

_SENTINELS = frozenset({"", "--", "NaN", "nan"})


class DriveTrackModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict, repr=False)
    """Original payload dict."""

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        # Keep a caller-supplied raw (kwargs construction) untouched.
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned
