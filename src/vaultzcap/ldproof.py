"""Ed25519Signature2018 linked-data proofs with detached JWS.

Signing:
1. Split the document into its body (everything but ``proof``) and the
   proof options (``type``, ``created``, ``verificationMethod``,
   ``proofPurpose``) under the document's ``@context``
2. Canonicalize both with URDNA2015 (PyLD, contexts from the cache)
3. Hash each with SHA-256 and concatenate: options hash first
4. Sign ``<b64url(header)>.<hashes>`` with Ed25519, header
   ``{"alg":"EdDSA","b64":false,"crit":["b64"]}``
5. Store the detached JWS ``<b64url(header)>..<b64url(signature)>``

Verification recomputes the same bytes and checks the signature.
"""

from __future__ import annotations

import base64
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from pyld import jsonld
from pyld.jsonld import JsonLdError

from .defaults import DELEGATION_PURPOSE, SIGNATURE_TYPE
from .errors import SigningError, VerificationError
from .kms import KeyHandle, KeyManager
from .ldcontext import LDContextCache

JWS_HEADER = {"alg": "EdDSA", "b64": False, "crit": ["b64"]}
PROOF_OPTION_KEYS = ("type", "created", "verificationMethod", "proofPurpose")


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


class Signer(Protocol):
    """Anything that can produce a raw Ed25519 signature."""

    def sign(self, data: bytes) -> bytes: ...


@dataclass
class KeyManagerSigner:
    """Binds a key manager to one of its keys."""

    key_manager: KeyManager
    handle: KeyHandle

    def sign(self, data: bytes) -> bytes:
        return self.key_manager.sign(self.handle, data)

    @property
    def public_key_bytes(self) -> bytes:
        return self.key_manager.public_key_bytes(self.handle)


class Ed25519Signature2018:
    """Linked-data signature suite bound to a context cache."""

    signature_type = SIGNATURE_TYPE

    def __init__(self, contexts: LDContextCache) -> None:
        self._loader = contexts.document_loader()

    def canonicalize(self, document: dict[str, Any]) -> bytes:
        normalized = jsonld.normalize(
            document,
            {
                "algorithm": "URDNA2015",
                "format": "application/n-quads",
                "documentLoader": self._loader,
            },
        )
        return normalized.encode("utf-8")

    def verify_data(self, document: dict[str, Any], options: dict[str, Any]) -> bytes:
        """Bytes covered by the signature (before the JWS header is prepended)."""
        body = {key: value for key, value in document.items() if key != "proof"}
        proof_options = {"@context": body.get("@context"), **options}

        options_hash = hashlib.sha256(self.canonicalize(proof_options)).digest()
        body_hash = hashlib.sha256(self.canonicalize(body)).digest()
        return options_hash + body_hash

    def create_proof(
        self,
        document: dict[str, Any],
        signer: Signer,
        verification_method: str,
        purpose: str = DELEGATION_PURPOSE,
        created: datetime | None = None,
    ) -> dict[str, Any]:
        """Sign ``document`` and return the proof object to embed.

        Raises:
            SigningError: If canonicalization or signing fails.
        """
        created = created or datetime.now(timezone.utc)
        options = {
            "type": self.signature_type,
            "created": created.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "verificationMethod": verification_method,
            "proofPurpose": purpose,
        }

        try:
            tbs = self.verify_data(document, options)
        except JsonLdError as e:
            raise SigningError(f"failed to canonicalize document: {e}") from e

        header = b64url_encode(json.dumps(JWS_HEADER, separators=(",", ":")).encode("utf-8"))

        try:
            signature = signer.sign(header.encode("ascii") + b"." + tbs)
        except SigningError:
            raise
        except Exception as e:
            raise SigningError(f"failed to sign document: {e}") from e

        return {**options, "jws": f"{header}..{b64url_encode(signature)}"}

    def verify_proof(
        self,
        document: dict[str, Any],
        public_key: Ed25519PublicKey,
        purpose: str | None = DELEGATION_PURPOSE,
    ) -> None:
        """Check the embedded proof of ``document`` against ``public_key``.

        Raises:
            VerificationError: If the proof is missing, malformed, made for
                another purpose, or does not verify.
        """
        proof = document.get("proof")
        if not isinstance(proof, dict):
            raise VerificationError(f"document {document.get('id')} has no proof")

        if proof.get("type") != self.signature_type:
            raise VerificationError(f"unsupported proof type {proof.get('type')}")

        if purpose is not None and proof.get("proofPurpose") != purpose:
            raise VerificationError(
                f"proof purpose {proof.get('proofPurpose')} does not match expected {purpose}"
            )

        jws = proof.get("jws")
        parts = jws.split(".") if isinstance(jws, str) else []
        if len(parts) != 3 or parts[1]:
            raise VerificationError("proof jws is not a detached JWS")

        try:
            header = json.loads(b64url_decode(parts[0]))
            signature = b64url_decode(parts[2])
        except ValueError as e:
            raise VerificationError(f"proof jws is malformed: {e}") from e

        if not isinstance(header, dict) or header.get("alg") != "EdDSA" or header.get("b64") is not False:
            raise VerificationError("proof jws header must be EdDSA with unencoded payload")

        options = {key: proof.get(key) for key in PROOF_OPTION_KEYS}

        try:
            tbs = self.verify_data(document, options)
        except JsonLdError as e:
            raise VerificationError(f"failed to canonicalize document: {e}") from e

        try:
            public_key.verify(signature, parts[0].encode("ascii") + b"." + tbs)
        except InvalidSignature:
            raise VerificationError(f"invalid signature on {document.get('id')}")
