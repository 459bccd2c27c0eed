"""Error taxonomy for capability issuance and invocation checks.

Construction-time errors (:class:`ConfigurationError`,
:class:`InitializationError`) surface synchronously to whoever builds the
service or the middleware. Per-request errors surface as
:class:`VerificationError` (or a store error met while resolving a chain)
and are turned into a ``400`` response by the authorizer's error reporter.
"""

from __future__ import annotations


class ZcapError(Exception):
    """Base error for capability operations."""
    pass


class ConfigurationError(ZcapError):
    """Resource was never provisioned (no root capability stored)."""
    pass


class InitializationError(ZcapError):
    """Embedded linked-data contexts could not be loaded."""
    pass


class SigningError(ZcapError):
    """Key generation or signature production failed."""
    pass


class StoreError(ZcapError):
    """Capability store backend is unavailable or failed."""
    pass


class NotFoundError(StoreError):
    """Key not present in the capability store."""
    pass


class MalformedCapabilityError(ZcapError):
    """Stored or presented capability document violates the schema."""
    pass


class VerificationError(ZcapError):
    """Invocation, signature, or capability chain failed verification."""
    pass
