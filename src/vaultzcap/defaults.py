"""Centralized configurable defaults for vaultzcap.

All tunable parameters in one place. Values a deployment may need to change
read from the environment.
"""

from __future__ import annotations

import os
from pathlib import Path

# Capability store
STORE_NAME = "zcap_capability"
DB_PATH = Path(
    os.environ.get("VAULTZCAP_DB_PATH", str(Path.home() / ".vaultzcap" / "capabilities.sqlite"))
)

# Capability contents
RESOURCE_TYPE = "urn:edv:vault"
ALLOWED_ACTIONS = ("read", "write")
READ_ACTION = "read"
WRITE_ACTION = "write"

# Methods that only retrieve; everything else needs "write"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

# Linked-data vocabularies served from the embedded context cache
SECURITY_V1_URL = "https://w3id.org/security/v1"
SECURITY_V2_URL = "https://w3id.org/security/v2"

# Proofs
SIGNATURE_TYPE = "Ed25519Signature2018"
DELEGATION_PURPOSE = "capabilityDelegation"

# HTTP invocation
CAPABILITY_INVOCATION_HEADER = "capability-invocation"
SIGNATURE_HEADER = "signature"
REQUIRED_SIGNED_HEADERS = ("(request-target)", CAPABILITY_INVOCATION_HEADER)
DEFAULT_SIGNED_HEADERS = ("(request-target)", "date", CAPABILITY_INVOCATION_HEADER)
MAX_CLOCK_SKEW_SECONDS = int(os.environ.get("VAULTZCAP_MAX_CLOCK_SKEW_SECONDS", "300"))

# Largest decompressed inline capability accepted in Capability-Invocation
MAX_INLINE_CAPABILITY_BYTES = 64 * 1024

# Remote context fetches (only for vocabularies missing from the cache)
REMOTE_CONTEXT_TIMEOUT_SECONDS = 10

LOG_LEVEL = os.environ.get("VAULTZCAP_LOG_LEVEL", "INFO")
