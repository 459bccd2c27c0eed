"""Minting of root and delegated capabilities.

Every capability is signed with a freshly generated key, so compromising
one delegation's key exposes nothing else. The signer's identity is the
did:key derived from that key's public bytes.
"""

from __future__ import annotations

import logging
import uuid

from .capability import Capability, InvocationTarget, Proof, parse_capability
from .defaults import ALLOWED_ACTIONS, RESOURCE_TYPE
from .didkey import create_did_key
from .errors import NotFoundError, SigningError
from .kms import KeyManager
from .ldcontext import LDContextCache
from .ldproof import Ed25519Signature2018, KeyManagerSigner
from .store import CapabilityStore, get_capability

logger = logging.getLogger(__name__)


def new_capability_id() -> str:
    return uuid.uuid4().urn


class CapabilityFactory:
    """Builds, signs and persists capability documents."""

    def __init__(
        self,
        key_manager: KeyManager,
        store: CapabilityStore,
        contexts: LDContextCache,
        resource_type: str = RESOURCE_TYPE,
    ) -> None:
        self.key_manager = key_manager
        self.store = store
        self.suite = Ed25519Signature2018(contexts)
        self.resource_type = resource_type

    def _new_signer(self) -> tuple[KeyManagerSigner, str]:
        """Generate a signing key and return it with its verification method."""
        try:
            handle = self.key_manager.generate_signing_key()
            signer = KeyManagerSigner(self.key_manager, handle)
            _, verification_method = create_did_key(signer.public_key_bytes)
        except SigningError:
            raise
        except Exception as e:
            raise SigningError(f"failed to create crypto signer: {e}") from e
        return signer, verification_method

    def sign(self, capability: Capability, controlled: bool = False) -> Capability:
        """Attach a proof made with a freshly generated key.

        With ``controlled`` the signer also becomes the capability's controller.
        """
        signer, verification_method = self._new_signer()
        if controlled:
            capability.controller = verification_method
        proof = self.suite.create_proof(capability.unsigned_dict(), signer, verification_method)
        capability.proof = Proof.from_dict(proof)
        return capability

    async def create_root(self, resource_id: str) -> bytes:
        """Mint the root capability for ``resource_id``.

        The root is written under its own id and under ``resource_id`` in a
        single atomic write.

        Returns:
            Serialized, signed root capability.

        Raises:
            SigningError: If key generation or signing fails.
            StoreError: If persistence fails.
        """
        root = self.sign(Capability(
            id=new_capability_id(),
            invocation_target=InvocationTarget(id=resource_id, type=self.resource_type),
            allowed_actions=list(ALLOWED_ACTIONS),
        ), controlled=True)

        data = root.serialize()
        await self.store.put_many([(root.id, data), (resource_id, data)])

        logger.info(f"Issued root capability {root.id} for resource {resource_id}")
        return data

    async def get_root(self, resource_id: str) -> Capability:
        """Return the root capability stored for ``resource_id``."""
        return await get_capability(self.store, resource_id)

    async def create_delegated(self, resource_id: str, invoker: str) -> bytes:
        """Mint a capability delegating read/write on ``resource_id`` to ``invoker``.

        The delegation hangs off the resource's existing root. A root is
        minted only when the resource has none yet.

        Args:
            resource_id: Protected resource identifier
            invoker: Verification method allowed to invoke the capability

        Returns:
            Serialized, signed delegated capability.
        """
        try:
            root = await self.get_root(resource_id)
            logger.info(f"Delegating under existing root {root.id} for resource {resource_id}")
        except NotFoundError:
            root = parse_capability(await self.create_root(resource_id))
            logger.info(f"Resource {resource_id} had no root capability, minted {root.id}")

        capability = self.sign(Capability(
            id=new_capability_id(),
            invocation_target=InvocationTarget(id=resource_id, type=self.resource_type),
            allowed_actions=list(ALLOWED_ACTIONS),
            capability_chain=[root.id],
            parent=root.id,
            invoker=invoker,
        ))

        data = capability.serialize()
        await self.store.put(capability.id, data)

        logger.info(
            f"Issued capability {capability.id}: {invoker} on {resource_id} "
            f"(parent={root.id}, actions={capability.allowed_actions})"
        )
        return data
