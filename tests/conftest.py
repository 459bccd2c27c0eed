"""Shared fixtures for vaultzcap tests."""

from __future__ import annotations

from dataclasses import dataclass

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from vaultzcap.didkey import create_did_key
from vaultzcap.factory import CapabilityFactory
from vaultzcap.kms import LocalKeyManager
from vaultzcap.ldcontext import LDContextCache
from vaultzcap.store import InMemoryCapabilityStore


@dataclass
class Invoker:
    """A client key pair and its did:key identity."""

    private_key: Ed25519PrivateKey
    did: str
    verification_method: str


def make_invoker() -> Invoker:
    private_key = Ed25519PrivateKey.generate()
    did, verification_method = create_did_key(private_key.public_key().public_bytes_raw())
    return Invoker(private_key=private_key, did=did, verification_method=verification_method)


@pytest.fixture(scope="session")
def contexts() -> LDContextCache:
    return LDContextCache()


@pytest.fixture
def store() -> InMemoryCapabilityStore:
    return InMemoryCapabilityStore("zcap_capability")


@pytest.fixture
def key_manager() -> LocalKeyManager:
    return LocalKeyManager()


@pytest.fixture
def factory(key_manager, store, contexts) -> CapabilityFactory:
    return CapabilityFactory(key_manager, store, contexts)


@pytest.fixture
def invoker() -> Invoker:
    return make_invoker()


@pytest.fixture
def other_invoker() -> Invoker:
    return make_invoker()


@pytest.fixture
def third_invoker() -> Invoker:
    return make_invoker()
