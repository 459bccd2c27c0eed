"""Key manager used to mint capability signing keys.

Only the narrow surface the capability factory needs is defined here:
generate a key, sign with it, export its public bytes. ``LocalKeyManager``
keeps Ed25519 private keys in process memory; any other backend (HSM,
remote KMS) implements the same :class:`KeyManager` protocol.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from .errors import SigningError


@dataclass(frozen=True)
class KeyHandle:
    """Opaque reference to a key held by a key manager."""

    key_id: str
    key_type: str = "ED25519"


@runtime_checkable
class KeyManager(Protocol):
    """Interface for signing key backends."""

    def generate_signing_key(self) -> KeyHandle: ...

    def sign(self, handle: KeyHandle, data: bytes) -> bytes: ...

    def public_key_bytes(self, handle: KeyHandle) -> bytes: ...


class LocalKeyManager:
    """In-memory Ed25519 key manager."""

    def __init__(self) -> None:
        self._keys: dict[str, Ed25519PrivateKey] = {}
        self._lock = threading.Lock()

    def generate_signing_key(self) -> KeyHandle:
        try:
            private_key = Ed25519PrivateKey.generate()
        except Exception as e:
            raise SigningError(f"failed to generate signing key: {e}") from e

        handle = KeyHandle(key_id=uuid.uuid4().hex)
        with self._lock:
            self._keys[handle.key_id] = private_key
        return handle

    def _private_key(self, handle: KeyHandle) -> Ed25519PrivateKey:
        with self._lock:
            private_key = self._keys.get(handle.key_id)
        if private_key is None:
            raise SigningError(f"unknown key handle {handle.key_id}")
        return private_key

    def sign(self, handle: KeyHandle, data: bytes) -> bytes:
        return self._private_key(handle).sign(data)

    def public_key_bytes(self, handle: KeyHandle) -> bytes:
        return self._private_key(handle).public_key().public_bytes_raw()

    def __len__(self) -> int:
        return len(self._keys)
