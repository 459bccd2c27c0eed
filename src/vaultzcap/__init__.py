"""vaultzcap - Capability-based authorization for encrypted data vaults.

vaultzcap provides:
- Root and delegated capability issuance (ZCAP-LD documents, Ed25519Signature2018 proofs)
- Capability persistence (in-memory and SQLite stores)
- HTTP-signature invocation checks as Starlette middleware
- An embedded JSON-LD context cache for offline canonicalization
"""

__version__ = "1.0.0"

from .authorizer import (
    CapabilityVerifier,
    InvocationAuthorizer,
    InvocationMiddleware,
    report_bad_request,
    required_action,
)
from .capability import (
    Capability,
    InvocationTarget,
    Proof,
    parse_capability,
)
from .didkey import (
    DIDKeyResolver,
    create_did_key,
)
from .errors import (
    ConfigurationError,
    InitializationError,
    MalformedCapabilityError,
    NotFoundError,
    SigningError,
    StoreError,
    VerificationError,
    ZcapError,
)
from .factory import CapabilityFactory
from .httpsig import sign_request
from .kms import KeyHandle, LocalKeyManager
from .ldcontext import LDContextCache
from .service import ZcapService
from .store import (
    CapabilityStore,
    InMemoryCapabilityStore,
    InMemoryStoreProvider,
    SQLiteCapabilityStore,
    SQLiteStoreProvider,
    StoreCapabilityResolver,
)

__all__ = [
    # Service
    "ZcapService",
    "CapabilityFactory",
    "InvocationAuthorizer",
    "InvocationMiddleware",
    "CapabilityVerifier",
    "required_action",
    "report_bad_request",
    # Documents
    "Capability",
    "InvocationTarget",
    "Proof",
    "parse_capability",
    # Keys
    "KeyHandle",
    "LocalKeyManager",
    "DIDKeyResolver",
    "create_did_key",
    "sign_request",
    # Storage
    "CapabilityStore",
    "InMemoryCapabilityStore",
    "InMemoryStoreProvider",
    "SQLiteCapabilityStore",
    "SQLiteStoreProvider",
    "StoreCapabilityResolver",
    # Contexts
    "LDContextCache",
    # Errors
    "ZcapError",
    "ConfigurationError",
    "InitializationError",
    "SigningError",
    "StoreError",
    "NotFoundError",
    "MalformedCapabilityError",
    "VerificationError",
]
