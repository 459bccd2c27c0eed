"""Capability documents.

A capability is a signed JSON-LD object granting actions on one resource.
Root capabilities name no parent and anchor every delegation; delegated
capabilities point at their parent and list their ancestry, root first, in
``capabilityChain``.

Wire format (security vocabulary v2 terms)::

    {
      "@context": "https://w3id.org/security/v2",
      "id": "urn:uuid:...",
      "controller": "did:key:z6Mk...#z6Mk...",     # root only
      "invoker": "did:key:z6Mk...#z6Mk...",        # delegated only
      "parentCapability": "urn:uuid:...",          # delegated only
      "allowedAction": ["read", "write"],
      "invocationTarget": {"id": "vault-7", "type": "urn:edv:vault"},
      "capabilityChain": ["urn:uuid:<root>"],
      "proof": {"type": "Ed25519Signature2018", ...}
    }
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from .defaults import RESOURCE_TYPE, SECURITY_V2_URL
from .errors import MalformedCapabilityError


@dataclass
class InvocationTarget:
    """The protected resource a capability is bound to."""

    id: str
    type: str = RESOURCE_TYPE

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type}


@dataclass
class Proof:
    """Linked-data signature attached to a capability.

    Attributes:
        type: Signature suite name (``Ed25519Signature2018``)
        created: ISO 8601 UTC timestamp of signing
        verification_method: did:key URL of the signing key
        proof_purpose: Why the proof was made (``capabilityDelegation``)
        jws: Detached JWS holding the signature value
    """

    type: str
    created: str
    verification_method: str
    proof_purpose: str
    jws: str

    def options(self) -> dict[str, Any]:
        """Proof fields covered by the signature (everything but the value)."""
        return {
            "type": self.type,
            "created": self.created,
            "verificationMethod": self.verification_method,
            "proofPurpose": self.proof_purpose,
        }

    def to_dict(self) -> dict[str, Any]:
        return {**self.options(), "jws": self.jws}

    @classmethod
    def from_dict(cls, data: Any) -> "Proof":
        if not isinstance(data, dict):
            raise MalformedCapabilityError("proof must be an object")

        values = {}
        for key in ("type", "created", "verificationMethod", "proofPurpose", "jws"):
            value = data.get(key)
            if not isinstance(value, str) or not value:
                raise MalformedCapabilityError(f"proof is missing {key}")
            values[key] = value

        return cls(
            type=values["type"],
            created=values["created"],
            verification_method=values["verificationMethod"],
            proof_purpose=values["proofPurpose"],
            jws=values["jws"],
        )


@dataclass
class Capability:
    """A signed, delegable grant of actions on a resource.

    Attributes:
        id: Globally unique capability identifier (``urn:uuid:...``)
        invocation_target: Resource this capability grants access to
        allowed_actions: Actions the invoker may perform
        capability_chain: Ancestor capability ids, root first, excluding self
        parent: Id of the capability this one was delegated from
        invoker: Verification method allowed to invoke this capability
        controller: Verification method of the signer (root capabilities)
        proof: Linked-data signature over the document
        context: JSON-LD context of the document
    """

    id: str
    invocation_target: InvocationTarget
    allowed_actions: list[str] = field(default_factory=list)
    capability_chain: list[str] = field(default_factory=list)
    parent: str | None = None
    invoker: str | None = None
    controller: str | None = None
    proof: Proof | None = None
    context: str | list[Any] = SECURITY_V2_URL

    @property
    def is_root(self) -> bool:
        return self.parent is None and not self.capability_chain

    @property
    def effective_invoker(self) -> str | None:
        """Identity entitled to invoke: the invoker, else the controller."""
        return self.invoker or self.controller

    def allows(self, action: str) -> bool:
        return action in self.allowed_actions

    def unsigned_dict(self) -> dict[str, Any]:
        """Document without its proof, as covered by the signature."""
        data: dict[str, Any] = {"@context": self.context, "id": self.id}
        if self.controller:
            data["controller"] = self.controller
        if self.invoker:
            data["invoker"] = self.invoker
        if self.parent:
            data["parentCapability"] = self.parent
        data["allowedAction"] = list(self.allowed_actions)
        data["invocationTarget"] = self.invocation_target.to_dict()
        data["capabilityChain"] = list(self.capability_chain)
        return data

    def to_dict(self) -> dict[str, Any]:
        data = self.unsigned_dict()
        if self.proof is not None:
            data["proof"] = self.proof.to_dict()
        return data

    def serialize(self) -> bytes:
        """Deterministic JSON bytes, the form kept in the store."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Any) -> "Capability":
        """Build and structurally validate a capability.

        Raises:
            MalformedCapabilityError: On any schema violation.
        """
        if not isinstance(data, dict):
            raise MalformedCapabilityError("capability must be a JSON object")

        capability_id = data.get("id")
        if not isinstance(capability_id, str) or not capability_id:
            raise MalformedCapabilityError("capability is missing id")

        context = data.get("@context")
        if not isinstance(context, (str, list)) or not context:
            raise MalformedCapabilityError(f"capability {capability_id} is missing @context")

        target = data.get("invocationTarget")
        if isinstance(target, str):
            target = {"id": target, "type": RESOURCE_TYPE}
        if not isinstance(target, dict) or not isinstance(target.get("id"), str) or not target["id"]:
            raise MalformedCapabilityError(f"capability {capability_id} is missing invocationTarget")
        target_type = target.get("type", RESOURCE_TYPE)
        if not isinstance(target_type, str):
            raise MalformedCapabilityError(f"capability {capability_id} has invalid invocationTarget type")

        allowed_actions = _string_list(data, "allowedAction", capability_id)
        chain = _string_list(data, "capabilityChain", capability_id)

        optional: dict[str, str | None] = {}
        for key in ("parentCapability", "invoker", "controller"):
            value = data.get(key)
            if value is not None and (not isinstance(value, str) or not value):
                raise MalformedCapabilityError(f"capability {capability_id} has invalid {key}")
            optional[key] = value

        parent = optional["parentCapability"]
        if parent is None and chain:
            raise MalformedCapabilityError(f"capability {capability_id} has a chain but no parentCapability")
        if parent is not None and (not chain or chain[-1] != parent):
            raise MalformedCapabilityError(
                f"capability {capability_id} chain does not end at parentCapability {parent}"
            )

        proof = data.get("proof")

        return cls(
            id=capability_id,
            invocation_target=InvocationTarget(id=target["id"], type=target_type),
            allowed_actions=allowed_actions,
            capability_chain=chain,
            parent=parent,
            invoker=optional["invoker"],
            controller=optional["controller"],
            proof=Proof.from_dict(proof) if proof is not None else None,
            context=context,
        )


def _string_list(data: dict[str, Any], key: str, capability_id: str) -> list[str]:
    value = data.get(key, [])
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(item, str) and item for item in value):
        raise MalformedCapabilityError(f"capability {capability_id} has invalid {key}")
    return list(value)


def parse_capability(raw: bytes | str) -> Capability:
    """Deserialize and structurally validate a stored capability document.

    Raises:
        MalformedCapabilityError: If the bytes are not a valid capability.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedCapabilityError(f"capability is not valid JSON: {e}") from e

    return Capability.from_dict(data)
