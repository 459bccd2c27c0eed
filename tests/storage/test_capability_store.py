"""Tests for capability stores and providers."""

from __future__ import annotations

import asyncio
import sqlite3
from unittest.mock import patch

import pytest

from vaultzcap.capability import Capability, InvocationTarget
from vaultzcap.errors import MalformedCapabilityError, NotFoundError, StoreError
from vaultzcap.store import (
    CapabilityResolver,
    InMemoryCapabilityStore,
    InMemoryStoreProvider,
    SQLiteCapabilityStore,
    SQLiteStoreProvider,
    StoreCapabilityResolver,
    StoreProvider,
    get_capability,
)


def capability(capability_id: str = "urn:uuid:root") -> Capability:
    return Capability(
        id=capability_id,
        invocation_target=InvocationTarget(id="vault-7"),
        allowed_actions=["read", "write"],
    )


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryCapabilityStore("zcap_capability")
    return SQLiteCapabilityStore(tmp_path / "caps.sqlite", "zcap_capability")


class TestStoreContract:
    """Behaviour shared by every backend."""

    @pytest.mark.asyncio
    async def test_put_get(self, any_store):
        await any_store.put("k", b"value")
        assert await any_store.get("k") == b"value"

    @pytest.mark.asyncio
    async def test_put_overwrites(self, any_store):
        await any_store.put("k", b"old")
        await any_store.put("k", b"new")
        assert await any_store.get("k") == b"new"

    @pytest.mark.asyncio
    async def test_missing_key(self, any_store):
        with pytest.raises(NotFoundError):
            await any_store.get("missing")

    @pytest.mark.asyncio
    async def test_not_found_is_store_error(self, any_store):
        with pytest.raises(StoreError):
            await any_store.get("missing")

    @pytest.mark.asyncio
    async def test_put_many(self, any_store):
        await any_store.put_many([("a", b"1"), ("b", b"2")])
        assert await any_store.get("a") == b"1"
        assert await any_store.get("b") == b"2"

    @pytest.mark.asyncio
    async def test_concurrent_puts_different_keys(self, any_store):
        await asyncio.gather(*(any_store.put(f"key-{i}", str(i).encode()) for i in range(20)))
        for i in range(20):
            assert await any_store.get(f"key-{i}") == str(i).encode()


class TestSQLiteStore:
    """SQLite-specific behaviour."""

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "caps.sqlite"
        await SQLiteCapabilityStore(path, "zcap_capability").put("k", b"v")
        assert await SQLiteCapabilityStore(path, "zcap_capability").get("k") == b"v"

    @pytest.mark.asyncio
    async def test_stores_are_isolated_by_name(self, tmp_path):
        provider = SQLiteStoreProvider(tmp_path / "caps.sqlite")
        await provider.open_store("one").put("k", b"v")
        with pytest.raises(NotFoundError):
            await provider.open_store("two").get("k")

    def test_invalid_store_name(self, tmp_path):
        with pytest.raises(StoreError):
            SQLiteCapabilityStore(tmp_path / "caps.sqlite", "bad name; drop")

    @pytest.mark.asyncio
    async def test_backend_failure_on_write(self, tmp_path):
        store = SQLiteCapabilityStore(tmp_path / "caps.sqlite", "zcap_capability")
        with patch.object(store, "_put_many_sync", side_effect=sqlite3.OperationalError("locked")):
            with pytest.raises(StoreError, match="locked"):
                await store.put("k", b"v")

    @pytest.mark.asyncio
    async def test_backend_failure_on_read(self, tmp_path):
        store = SQLiteCapabilityStore(tmp_path / "caps.sqlite", "zcap_capability")
        with patch.object(store, "_get_sync", side_effect=sqlite3.DatabaseError("corrupt")):
            with pytest.raises(StoreError, match="corrupt"):
                await store.get("k")

    @pytest.mark.asyncio
    async def test_put_many_is_atomic(self, tmp_path):
        path = tmp_path / "caps.sqlite"
        store = SQLiteCapabilityStore(path, "zcap_capability")

        conn = sqlite3.connect(path)
        conn.execute(
            "CREATE TRIGGER reject_b BEFORE INSERT ON zcap_capability "
            "WHEN NEW.key = 'b' BEGIN SELECT RAISE(ABORT, 'rejected'); END"
        )
        conn.commit()
        conn.close()

        with pytest.raises(StoreError, match="rejected"):
            await store.put_many([("a", b"1"), ("b", b"2")])
        with pytest.raises(NotFoundError):
            await store.get("a")


class TestProviders:
    """Test opening stores by name."""

    def test_in_memory_provider_shares_store_per_name(self):
        provider = InMemoryStoreProvider()
        assert provider.open_store("zcap_capability") is provider.open_store("zcap_capability")
        assert provider.open_store("a") is not provider.open_store("b")

    def test_providers_satisfy_protocol(self, tmp_path):
        assert isinstance(InMemoryStoreProvider(), StoreProvider)
        assert isinstance(SQLiteStoreProvider(tmp_path / "caps.sqlite"), StoreProvider)


class TestCapabilityResolution:
    """Test Get + ParseCapability and the resolver adapter."""

    @pytest.mark.asyncio
    async def test_get_capability(self, store):
        cap = capability()
        await store.put(cap.id, cap.serialize())
        assert await get_capability(store, cap.id) == cap

    @pytest.mark.asyncio
    async def test_get_capability_malformed(self, store):
        await store.put("broken", b"{}")
        with pytest.raises(MalformedCapabilityError):
            await get_capability(store, "broken")

    @pytest.mark.asyncio
    async def test_resolver(self, store):
        cap = capability("urn:uuid:child")
        await store.put(cap.id, cap.serialize())

        resolver = StoreCapabilityResolver(store)
        assert isinstance(resolver, CapabilityResolver)
        assert await resolver.resolve(cap.id) == cap

    @pytest.mark.asyncio
    async def test_resolver_missing(self, store):
        with pytest.raises(NotFoundError):
            await StoreCapabilityResolver(store).resolve("urn:uuid:nope")
