"""drivetrack - Async client for resilient driver location sharing."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("drivetrack")
except PackageNotFoundError:
    __version__ = "0+local"
from drivetrack.client import DriveTrackClient
from drivetrack.config import DriveTrackConfig
from drivetrack.exceptions import (
    ApiError,
    AuthenticationError,
    DriveTrackConfigError,
    DriveTrackError,
    InvalidInputError,
    NetworkError,
    PermissionDeniedError,
    PositionSourceError,
    SessionInvalidError,
    StorageCorruptionError,
    TransportError,
)
from drivetrack.lifecycle import SessionLifecycleController, StartupDecision
from drivetrack.location import (
    AsyncioTaskRegistrar,
    LocationOptions,
    PollingPositionWatcher,
    PositionSourceAdapter,
    StaticPermissionGate,
)
from drivetrack.models import BusAssignment, PositionSample, PositionUpdate
from drivetrack.session import CredentialStore, Session
from drivetrack.sharing import SharingController, SharingState
from drivetrack.storage import EncryptedFileStorage, MemorySecureStorage
from drivetrack.transport import ConnectionState, TransportManager, TransportStats

__all__ = [
    "__version__",
    "ApiError",
    "AsyncioTaskRegistrar",
    "AuthenticationError",
    "BusAssignment",
    "ConnectionState",
    "CredentialStore",
    "DriveTrackClient",
    "DriveTrackConfig",
    "DriveTrackConfigError",
    "DriveTrackError",
    "EncryptedFileStorage",
    "InvalidInputError",
    "LocationOptions",
    "MemorySecureStorage",
    "NetworkError",
    "PermissionDeniedError",
    "PollingPositionWatcher",
    "PositionSample",
    "PositionSourceAdapter",
    "PositionSourceError",
    "PositionUpdate",
    "Session",
    "SessionInvalidError",
    "SessionLifecycleController",
    "SharingController",
    "SharingState",
    "StartupDecision",
    "StaticPermissionGate",
    "StorageCorruptionError",
    "TransportError",
    "TransportManager",
    "TransportStats",
]
