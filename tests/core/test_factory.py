"""Tests for root and delegated capability issuance."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from vaultzcap.capability import Capability, InvocationTarget, parse_capability
from vaultzcap.didkey import DIDKeyResolver
from vaultzcap.errors import SigningError, StoreError
from vaultzcap.factory import CapabilityFactory, new_capability_id
from vaultzcap.ldproof import Ed25519Signature2018


class TestCreateRoot:
    """Test root capability minting."""

    @pytest.mark.asyncio
    async def test_root_fields(self, factory):
        root = parse_capability(await factory.create_root("vault-7"))

        assert root.id.startswith("urn:uuid:")
        assert root.invocation_target.id == "vault-7"
        assert root.invocation_target.type == "urn:edv:vault"
        assert root.allowed_actions == ["read", "write"]
        assert root.capability_chain == []
        assert root.parent is None
        assert root.is_root

    @pytest.mark.asyncio
    async def test_stored_under_id_and_resource(self, factory, store):
        data = await factory.create_root("vault-7")
        root = parse_capability(data)

        assert await store.get(root.id) == data
        assert await store.get("vault-7") == data
        assert root.serialize() == data

    @pytest.mark.asyncio
    async def test_controller_is_signer(self, factory):
        root = parse_capability(await factory.create_root("vault-7"))
        assert root.controller == root.proof.verification_method
        assert root.controller.startswith("did:key:z6Mk")

    @pytest.mark.asyncio
    async def test_proof_verifies(self, factory, contexts):
        root = parse_capability(await factory.create_root("vault-7"))
        public_key = DIDKeyResolver().resolve(root.proof.verification_method)
        Ed25519Signature2018(contexts).verify_proof(root.to_dict(), public_key)

    @pytest.mark.asyncio
    async def test_fresh_key_per_capability(self, factory, key_manager):
        first = parse_capability(await factory.create_root("vault-7"))
        second = parse_capability(await factory.create_root("vault-8"))

        assert first.id != second.id
        assert first.proof.verification_method != second.proof.verification_method
        assert len(key_manager) == 2

    @pytest.mark.asyncio
    async def test_key_generation_failure(self, store, contexts):
        key_manager = MagicMock()
        key_manager.generate_signing_key.side_effect = RuntimeError("kms unavailable")
        factory = CapabilityFactory(key_manager, store, contexts)

        with pytest.raises(SigningError, match="kms unavailable"):
            await factory.create_root("vault-7")
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_store_failure(self, key_manager, contexts):
        store = MagicMock()
        store.put_many = AsyncMock(side_effect=StoreError("db down"))
        factory = CapabilityFactory(key_manager, store, contexts)

        with pytest.raises(StoreError, match="db down"):
            await factory.create_root("vault-7")


class TestCreateDelegated:
    """Test delegated capability minting."""

    @pytest.mark.asyncio
    async def test_delegated_fields(self, factory, invoker):
        root = parse_capability(await factory.create_root("vault-7"))
        delegated = parse_capability(await factory.create_delegated("vault-7", invoker.verification_method))

        assert delegated.invoker == invoker.verification_method
        assert delegated.parent == root.id
        assert delegated.capability_chain == [root.id]
        assert delegated.allowed_actions == ["read", "write"]
        assert delegated.invocation_target.id == "vault-7"
        assert delegated.id != root.id

    @pytest.mark.asyncio
    async def test_stored_under_own_id(self, factory, store, invoker):
        await factory.create_root("vault-7")
        data = await factory.create_delegated("vault-7", invoker.verification_method)
        assert await store.get(parse_capability(data).id) == data

    @pytest.mark.asyncio
    async def test_proof_verifies_with_signer_key(self, factory, contexts, invoker):
        await factory.create_root("vault-7")
        delegated = parse_capability(await factory.create_delegated("vault-7", invoker.verification_method))

        public_key = DIDKeyResolver().resolve(delegated.proof.verification_method)
        Ed25519Signature2018(contexts).verify_proof(delegated.to_dict(), public_key)

    @pytest.mark.asyncio
    async def test_reuses_existing_root(self, factory, store, invoker, other_invoker):
        root_data = await factory.create_root("vault-7")

        first = parse_capability(await factory.create_delegated("vault-7", invoker.verification_method))
        second = parse_capability(await factory.create_delegated("vault-7", other_invoker.verification_method))

        assert await store.get("vault-7") == root_data
        assert first.capability_chain == second.capability_chain == [parse_capability(root_data).id]

    @pytest.mark.asyncio
    async def test_mints_root_when_missing(self, factory, store, invoker):
        delegated = parse_capability(await factory.create_delegated("vault-9", invoker.verification_method))

        root = parse_capability(await store.get("vault-9"))
        assert delegated.capability_chain == [root.id]
        assert await store.get(root.id) == root.serialize()

    @pytest.mark.asyncio
    async def test_store_failure(self, factory, store, invoker):
        await factory.create_root("vault-7")
        store.put = AsyncMock(side_effect=StoreError("disk full"))

        with pytest.raises(StoreError, match="disk full"):
            await factory.create_delegated("vault-7", invoker.verification_method)


class TestSign:
    """Test attaching proofs to caller-built capabilities."""

    def test_delegation_keeps_no_controller(self, factory, contexts):
        capability = factory.sign(Capability(
            id=new_capability_id(),
            invocation_target=InvocationTarget(id="vault-7"),
            allowed_actions=["read"],
            capability_chain=["urn:uuid:root"],
            parent="urn:uuid:root",
            invoker="did:key:z6Mk#z6Mk",
        ))

        assert capability.controller is None
        public_key = DIDKeyResolver().resolve(capability.proof.verification_method)
        Ed25519Signature2018(contexts).verify_proof(capability.to_dict(), public_key)

    def test_controlled_sets_signer_as_controller(self, factory, contexts):
        capability = factory.sign(
            Capability(id=new_capability_id(), invocation_target=InvocationTarget(id="vault-7")),
            controlled=True,
        )

        assert capability.controller == capability.proof.verification_method
        public_key = DIDKeyResolver().resolve(capability.controller)
        Ed25519Signature2018(contexts).verify_proof(capability.to_dict(), public_key)
