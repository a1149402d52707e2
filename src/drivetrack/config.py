"""Client configuration for drivetrack."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from drivetrack.exceptions import DriveTrackConfigError

#: Six days, the lifetime the backend grants a driver session.
DEFAULT_SESSION_TTL: float = 6 * 24 * 3600


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class DriveTrackConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        HTTP API base URL.
    ws_url : str
        Realtime endpoint. The session token is appended as the
        ``session_id`` query parameter.
    session_ttl : float
        Session lifetime in seconds, measured from the moment the token
        was saved.  Defaults to 6 days.
    reconnect_delay : float
        Constant delay in seconds between reconnect attempts while
        sharing is active.
    ws_heartbeat : float or None
        WebSocket ping interval in seconds, ``None`` to disable.
    http_timeout : float
        Total timeout in seconds for each HTTP collaborator call.
    sample_interval : float
        Position sampling interval in seconds (foreground and background).
    distance_interval : float
        Minimum movement in metres between samples. ``0`` emits even
        when stationary.
    high_accuracy : bool
        Request high-accuracy positioning.
    storage_dir : str or None
        Directory for the encrypted credential file.  ``None`` keeps the
        session in memory only.
    storage_key : str or None
        Hex-encoded 256-bit key for the credential file.  When ``None`` a
        key is generated once and kept next to the data.
    background_task_name : str
        Name of the background location task registration.
    notification_title : str
        Foreground-service notification title shown while sharing.
    notification_body : str
        Foreground-service notification body shown while sharing.
    """

    base_url: str = "https://yus.kwscloud.in"
    ws_url: str = "wss://yus.kwscloud.in/yus/driver-ws"
    session_ttl: float = DEFAULT_SESSION_TTL
    reconnect_delay: float = 3.0
    ws_heartbeat: float | None = 30.0
    http_timeout: float = 15.0
    sample_interval: float = 5.0
    distance_interval: float = 0.0
    high_accuracy: bool = True
    storage_dir: str | None = None
    storage_key: str | None = None
    background_task_name: str = "BACKGROUND_LOCATION_TASK"
    notification_title: str = "Drive Tracker"
    notification_body: str = "Sharing your location in the background"

    def __post_init__(self) -> None:
        if self.session_ttl <= 0:
            raise DriveTrackConfigError("session_ttl must be positive")
        if self.reconnect_delay < 0:
            raise DriveTrackConfigError("reconnect_delay must not be negative")
        if self.sample_interval <= 0:
            raise DriveTrackConfigError("sample_interval must be positive")
        if not self.ws_url.startswith(("ws://", "wss://")):
            raise DriveTrackConfigError(f"ws_url must be a ws:// or wss:// URI (got {self.ws_url!r})")

    @classmethod
    def from_env(cls, **overrides: Any) -> DriveTrackConfig:
        """Create configuration from ``DRIVETRACK_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "DRIVETRACK_BASE_URL": "base_url",
            "DRIVETRACK_WS_URL": "ws_url",
            "DRIVETRACK_STORAGE_DIR": "storage_dir",
            "DRIVETRACK_STORAGE_KEY": "storage_key",
            "DRIVETRACK_BACKGROUND_TASK_NAME": "background_task_name",
            "DRIVETRACK_NOTIFICATION_TITLE": "notification_title",
            "DRIVETRACK_NOTIFICATION_BODY": "notification_body",
        }
        _ENV_FLOAT_MAP = {
            "DRIVETRACK_SESSION_TTL": "session_ttl",
            "DRIVETRACK_RECONNECT_DELAY": "reconnect_delay",
            "DRIVETRACK_HTTP_TIMEOUT": "http_timeout",
            "DRIVETRACK_SAMPLE_INTERVAL": "sample_interval",
            "DRIVETRACK_DISTANCE_INTERVAL": "distance_interval",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = float(val)
            except ValueError as exc:
                raise DriveTrackConfigError(f"{env_key} must be a number (got {val!r})") from exc

        # An empty heartbeat disables pings.
        heartbeat_env = env.get("DRIVETRACK_WS_HEARTBEAT")
        if heartbeat_env is not None and "ws_heartbeat" not in overrides:
            config_kwargs["ws_heartbeat"] = float(heartbeat_env) if heartbeat_env.strip() else None

        if "high_accuracy" not in overrides:
            config_kwargs["high_accuracy"] = _env_bool(env.get("DRIVETRACK_HIGH_ACCURACY"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
