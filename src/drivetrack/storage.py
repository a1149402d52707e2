"""Secure key/value storage backends for the session credential.

The credential store only needs three async operations on string values,
so any platform keychain can be plugged in through :class:`SecureStorage`.
Two implementations ship with the library:

* :class:`MemorySecureStorage` keeps values in process memory.
* :class:`EncryptedFileStorage` seals each value with AES-GCM and writes
  it atomically to its own file.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import secrets
from pathlib import Path
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from drivetrack.exceptions import DriveTrackConfigError, StorageCorruptionError

_logger = logging.getLogger(__name__)

_NONCE_BYTES = 12
_KEY_FILE = ".key"
_VALID_KEY = re.compile(r"^[A-Za-z0-9._-]+$")


class SecureStorage(Protocol):
    """Structural storage interface used by the credential store."""

    async def get_item(self, key: str) -> str | None:
        ...

    async def set_item(self, key: str, value: str) -> None:
        ...

    async def delete_item(self, key: str) -> None:
        ...


class MemorySecureStorage:
    """In-process storage. Values vanish with the process."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    async def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def delete_item(self, key: str) -> None:
        self._items.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._items


def _parse_key(key_hex: str) -> bytes:
    text = key_hex.strip()
    try:
        key = bytes.fromhex(text)
    except ValueError as exc:
        raise DriveTrackConfigError("storage key must be hex-encoded") from exc
    if len(key) not in (16, 24, 32):
        raise DriveTrackConfigError(f"storage key must be 16, 24 or 32 bytes (got {len(key)})")
    return key


class EncryptedFileStorage:
    """AES-GCM sealed values, one file per key under *directory*.

    The record key is bound into the ciphertext as associated data, so a
    blob copied from one key's file to another fails to open.
    File IO runs in the default executor.
    """

    def __init__(self, directory: str | os.PathLike[str], key_hex: str | None = None) -> None:
        self._dir = Path(directory)
        self._key_hex = key_hex
        self._aead: AESGCM | None = None

    def _cipher(self) -> AESGCM:
        if self._aead is None:
            self._dir.mkdir(parents=True, exist_ok=True)
            if self._key_hex is not None:
                key = _parse_key(self._key_hex)
            else:
                key = self._load_or_create_key()
            self._aead = AESGCM(key)
        return self._aead

    def _load_or_create_key(self) -> bytes:
        key_path = self._dir / _KEY_FILE
        if key_path.exists():
            return _parse_key(key_path.read_text(encoding="ascii"))
        key = AESGCM.generate_key(bit_length=256)
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="ascii") as fh:
            fh.write(key.hex())
        _logger.debug("Generated new storage key at %s", key_path)
        return key

    def _path(self, key: str) -> Path:
        if not _VALID_KEY.match(key):
            raise ValueError(f"Invalid storage key name: {key!r}")
        return self._dir / f"{key}.bin"

    def _read(self, key: str) -> str | None:
        path = self._path(key)
        try:
            blob = path.read_bytes()
        except FileNotFoundError:
            return None
        if len(blob) <= _NONCE_BYTES:
            raise StorageCorruptionError(f"Stored record {key!r} is truncated")
        nonce, sealed = blob[:_NONCE_BYTES], blob[_NONCE_BYTES:]
        try:
            plain = self._cipher().decrypt(nonce, sealed, key.encode("utf-8"))
            return plain.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as exc:
            raise StorageCorruptionError(f"Stored record {key!r} failed to open") from exc

    def _write(self, key: str, value: str) -> None:
        path = self._path(key)
        nonce = secrets.token_bytes(_NONCE_BYTES)
        sealed = self._cipher().encrypt(nonce, value.encode("utf-8"), key.encode("utf-8"))
        tmp = path.with_suffix(".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as fh:
            fh.write(nonce + sealed)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)

    def _delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    async def get_item(self, key: str) -> str | None:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read, key)

    async def set_item(self, key: str, value: str) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write, key, value)

    async def delete_item(self, key: str) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._delete, key)
