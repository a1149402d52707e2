"""Persisted session credential and its validity rules."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from drivetrack.config import DEFAULT_SESSION_TTL
from drivetrack.exceptions import InvalidInputError, StorageCorruptionError
from drivetrack.storage import SecureStorage

_logger = logging.getLogger(__name__)

#: Storage key of the single session record.
SESSION_STORAGE_KEY = "driverSession"

_MS_THRESHOLD = 1_000_000_000_000


class Session(BaseModel):
    """An authenticated driver session.

    Parameters
    ----------
    token : str
        Opaque session identifier issued by the backend.
    created_at : float
        Wall-clock epoch seconds when the token was saved.  Persisted
        as epoch milliseconds under ``createdAt``.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    token: str = Field(min_length=1, validation_alias=AliasChoices("token", "session_id"))
    created_at: float = Field(gt=0, validation_alias=AliasChoices("created_at", "createdAt"))

    @field_validator("token")
    @classmethod
    def _reject_blank_token(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("session_id must not be blank")
        return value

    @field_validator("created_at", mode="before")
    @classmethod
    def _ms_to_seconds(cls, value: object) -> object:
        if isinstance(value, bool):
            raise ValueError("createdAt must be numeric")
        if isinstance(value, (int, float)) and value >= _MS_THRESHOLD:
            return value / 1000.0
        return value

    def age(self, now: float) -> float:
        """Seconds elapsed since the session was created."""
        return now - self.created_at

    def is_expired(self, now: float, ttl: float = DEFAULT_SESSION_TTL) -> bool:
        return self.age(now) >= ttl

    def to_record(self) -> str:
        """Serialize to the persisted JSON record."""
        return json.dumps(
            {"session_id": self.token, "createdAt": int(round(self.created_at * 1000))},
            separators=(",", ":"),
        )

    @classmethod
    def from_record(cls, raw: str) -> Session:
        """Parse the persisted JSON record.

        Raises
        ------
        StorageCorruptionError
            If the record is not JSON, not an object, or lacks a field.
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageCorruptionError("Session record is not JSON") from exc
        if not isinstance(data, dict):
            raise StorageCorruptionError("Session record is not a JSON object")
        if "session_id" not in data or "createdAt" not in data:
            raise StorageCorruptionError("Session record is missing session_id/createdAt")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise StorageCorruptionError(f"Session record is invalid: {exc.error_count()} error(s)") from exc


class CredentialStore:
    """Sole owner of the persisted session.

    Every operation holds one lock for its whole read-check-delete
    sequence, so an expired or corrupt record is removed before any
    other caller can read it.
    """

    def __init__(
        self,
        storage: SecureStorage,
        *,
        ttl: float = DEFAULT_SESSION_TTL,
        storage_key: str = SESSION_STORAGE_KEY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._ttl = ttl
        self._key = storage_key
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    async def save(self, token: str | None) -> Session:
        """Persist *token* as the current session, replacing any previous one."""
        if token is None or not str(token).strip():
            raise InvalidInputError("No session token provided")
        created_ms = int(self._clock() * 1000)
        session = Session(token=str(token), created_at=created_ms / 1000.0)
        async with self._lock:
            await self._storage.set_item(self._key, session.to_record())
        _logger.info("Session saved")
        return session

    async def load(self) -> Session | None:
        """Return the stored session regardless of age, or ``None``."""
        async with self._lock:
            return await self._load_locked()

    async def is_valid(self) -> bool:
        return await self.current() is not None

    async def current(self) -> Session | None:
        """Return the stored session if it has not expired.

        An expired record is deleted as a side effect.
        """
        async with self._lock:
            session = await self._load_locked()
            if session is None:
                return None
            if session.is_expired(self._clock(), self._ttl):
                await self._storage.delete_item(self._key)
                _logger.info("Session expired after %.0fs, deleted", session.age(self._clock()))
                return None
            return session

    async def get_token(self) -> str | None:
        """Token of the current valid session, or ``None``."""
        session = await self.current()
        return session.token if session is not None else None

    async def clear(self) -> None:
        async with self._lock:
            await self._storage.delete_item(self._key)
        _logger.debug("Session cleared")

    async def _load_locked(self) -> Session | None:
        try:
            raw = await self._storage.get_item(self._key)
            if raw is None:
                return None
            return Session.from_record(raw)
        except StorageCorruptionError as exc:
            _logger.warning("Discarding corrupted session record: %s", exc)
            await self._storage.delete_item(self._key)
            return None
