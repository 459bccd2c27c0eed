"""Capability service: the factory and the authorizer over one store.

Typical wiring::

    service = ZcapService(store_provider=SQLiteStoreProvider(DB_PATH))
    await service.create_root("vault-7")
    delegated = await service.create_delegated("vault-7", invoker_vm)

    gate = await service.handler("vault-7")
    app = Starlette(routes=[Route("/vaults/vault-7", gate.wrap(endpoint))])
"""

from __future__ import annotations

import logging

from .authorizer import ErrorReporter, InvocationAuthorizer, InvocationMiddleware
from .capability import Capability
from .defaults import RESOURCE_TYPE, STORE_NAME
from .didkey import DIDKeyResolver, KeyResolver
from .errors import StoreError
from .factory import CapabilityFactory
from .kms import KeyManager, LocalKeyManager
from .ldcontext import LDContextCache
from .store import InMemoryStoreProvider, StoreProvider, get_capability

logger = logging.getLogger(__name__)


class ZcapService:
    """Issues capabilities and builds invocation middlewares.

    Construction opens the capability store and loads the embedded JSON-LD
    contexts; failures of either are raised immediately so no resource is
    ever served without its gate.
    """

    def __init__(
        self,
        key_manager: KeyManager | None = None,
        store_provider: StoreProvider | None = None,
        contexts: LDContextCache | None = None,
        key_resolver: KeyResolver | None = None,
        store_name: str = STORE_NAME,
        resource_type: str = RESOURCE_TYPE,
    ) -> None:
        """Initialize the service.

        Args:
            key_manager: Signing key backend (in-memory Ed25519 if None)
            store_provider: Opens the capability store (in-memory if None)
            contexts: Context cache (embedded security vocabularies if None)
            key_resolver: Verification method resolver (did:key if None)
            store_name: Name of the store to open
            resource_type: invocationTarget type tag for issued capabilities

        Raises:
            StoreError: If the store cannot be opened.
            InitializationError: If the embedded contexts cannot be parsed.
        """
        provider = store_provider or InMemoryStoreProvider()
        try:
            self.store = provider.open_store(store_name)
        except StoreError as e:
            raise StoreError(f"failed to open store {store_name}: {e}") from e

        self.contexts = contexts or LDContextCache()
        self.key_manager = key_manager or LocalKeyManager()

        self.factory = CapabilityFactory(self.key_manager, self.store, self.contexts, resource_type)
        self.authorizer = InvocationAuthorizer(
            self.store,
            self.contexts,
            key_resolver=key_resolver or DIDKeyResolver(),
        )

    async def create_root(self, resource_id: str) -> bytes:
        return await self.factory.create_root(resource_id)

    async def create_delegated(self, resource_id: str, invoker: str) -> bytes:
        return await self.factory.create_delegated(resource_id, invoker)

    async def get_capability(self, key: str) -> Capability:
        return await get_capability(self.store, key)

    async def handler(
        self,
        resource_id: str,
        error_reporter: ErrorReporter | None = None,
    ) -> InvocationMiddleware:
        """Build the invocation middleware guarding ``resource_id``."""
        return await self.authorizer.build(resource_id, error_reporter=error_reporter)

    async def close(self) -> None:
        await self.store.close()
