"""did:key identifiers for Ed25519 keys.

A did:key identifier is derived from the public key itself: the multicodec
prefix ``0xed 0x01`` is prepended to the 32 raw key bytes, the result is
base58btc-encoded and tagged with the multibase prefix ``z``. The
verification method URL repeats the fingerprint as its fragment::

    did:key:z6Mk...#z6Mk...

Resolution is purely local, so verifying a capability signed by a did:key
never needs the network.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import base58
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .errors import VerificationError

DID_KEY_PREFIX = "did:key:"
MULTIBASE_BASE58BTC = "z"
ED25519_MULTICODEC = b"\xed\x01"
ED25519_PUBLIC_KEY_SIZE = 32


def key_fingerprint(public_key_bytes: bytes) -> str:
    """Multibase fingerprint of a raw Ed25519 public key."""
    return MULTIBASE_BASE58BTC + base58.b58encode(ED25519_MULTICODEC + public_key_bytes).decode("ascii")


def create_did_key(public_key_bytes: bytes) -> tuple[str, str]:
    """Return ``(did, verification_method_url)`` for a raw Ed25519 public key."""
    if len(public_key_bytes) != ED25519_PUBLIC_KEY_SIZE:
        raise ValueError(f"Ed25519 public key must be {ED25519_PUBLIC_KEY_SIZE} bytes")

    fingerprint = key_fingerprint(public_key_bytes)
    did = DID_KEY_PREFIX + fingerprint
    return did, f"{did}#{fingerprint}"


def public_key_from_did_key(did_or_url: str) -> bytes:
    """Extract raw public key bytes from a did:key DID or verification method URL.

    Raises:
        VerificationError: If the identifier is not an Ed25519 did:key.
    """
    if not did_or_url.startswith(DID_KEY_PREFIX):
        raise VerificationError(f"not a did:key identifier: {did_or_url}")

    did, _, fragment = did_or_url.partition("#")
    fingerprint = did[len(DID_KEY_PREFIX):]

    if fragment and fragment != fingerprint:
        raise VerificationError(f"did:key fragment does not match key fingerprint: {did_or_url}")

    if not fingerprint.startswith(MULTIBASE_BASE58BTC):
        raise VerificationError(f"unsupported multibase encoding in {did_or_url}")

    try:
        decoded = base58.b58decode(fingerprint[1:])
    except ValueError as e:
        raise VerificationError(f"invalid base58 fingerprint in {did_or_url}: {e}") from e

    if not decoded.startswith(ED25519_MULTICODEC):
        raise VerificationError(f"did:key {did_or_url} is not an Ed25519 key")

    key_bytes = decoded[len(ED25519_MULTICODEC):]
    if len(key_bytes) != ED25519_PUBLIC_KEY_SIZE:
        raise VerificationError(f"did:key {did_or_url} has wrong key length {len(key_bytes)}")

    return key_bytes


@runtime_checkable
class KeyResolver(Protocol):
    """Maps a verification method identifier to a public key."""

    def resolve(self, verification_method: str) -> Ed25519PublicKey: ...


class DIDKeyResolver:
    """Resolves did:key verification methods without network access."""

    def resolve(self, verification_method: str) -> Ed25519PublicKey:
        key_bytes = public_key_from_did_key(verification_method)
        return Ed25519PublicKey.from_public_bytes(key_bytes)
