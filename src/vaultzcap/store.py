"""Capability persistence.

The store is a plain key -> bytes mapping; it never transforms documents.
Root capabilities live under two keys (their own id and the protected
resource id) so the authorizer can find a resource's root without walking
any chain.

Implementations:
- In-memory (for testing and single-process deployments)
- SQLite (for single-node deployment)

Stores are opened by name through a :class:`StoreProvider`.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol, runtime_checkable

from .capability import Capability, parse_capability
from .errors import NotFoundError, StoreError

logger = logging.getLogger(__name__)


# =============================================================================
# STORE INTERFACE
# =============================================================================

class CapabilityStore:
    """Abstract interface for capability persistence.

    Each ``put``/``get`` is an independent atomic operation on its key;
    writes to different keys never disturb each other.
    """

    async def put(self, key: str, data: bytes) -> None:
        """Store ``data`` under ``key``, overwriting any existing value."""
        raise NotImplementedError

    async def put_many(self, items: Iterable[tuple[str, bytes]]) -> None:
        """Store several keys in one atomic write (all or nothing)."""
        raise NotImplementedError

    async def get(self, key: str) -> bytes:
        """Return the value under ``key``. Raises NotFoundError if absent."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release backend resources."""
        return None


class InMemoryCapabilityStore(CapabilityStore):
    """In-memory capability store."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._data: dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    async def put(self, key: str, data: bytes) -> None:
        self._data[key] = bytes(data)

    async def put_many(self, items: Iterable[tuple[str, bytes]]) -> None:
        staged = {key: bytes(data) for key, data in items}
        async with self._lock:
            self._data.update(staged)

    async def get(self, key: str) -> bytes:
        try:
            return self._data[key]
        except KeyError:
            raise NotFoundError(f"key {key} not found in store {self.name}") from None

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SQLiteCapabilityStore(CapabilityStore):
    """SQLite-backed capability store, one table per store name.

    sqlite3 is blocking, so every call runs in a worker thread with its own
    short-lived connection.
    """

    def __init__(self, path: Path | str, name: str) -> None:
        if not _TABLE_NAME.match(name):
            raise StoreError(f"invalid store name {name!r}")

        self.path = Path(path)
        self.name = name

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect()
            try:
                with conn:
                    conn.execute(
                        f"CREATE TABLE IF NOT EXISTS {self.name} ("
                        "key TEXT PRIMARY KEY, value BLOB NOT NULL)"
                    )
            finally:
                conn.close()
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"failed to open store {name} at {self.path}: {e}") from e

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=30)

    def _put_many_sync(self, items: list[tuple[str, bytes]]) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.executemany(
                    f"INSERT OR REPLACE INTO {self.name} (key, value) VALUES (?, ?)",
                    items,
                )
        finally:
            conn.close()

    def _get_sync(self, key: str) -> bytes | None:
        conn = self._connect()
        try:
            row = conn.execute(f"SELECT value FROM {self.name} WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        return bytes(row[0]) if row else None

    async def put(self, key: str, data: bytes) -> None:
        await self.put_many([(key, data)])

    async def put_many(self, items: Iterable[tuple[str, bytes]]) -> None:
        rows = [(key, bytes(data)) for key, data in items]
        try:
            await asyncio.to_thread(self._put_many_sync, rows)
        except sqlite3.Error as e:
            logger.error(f"Failed to write {len(rows)} key(s) to store {self.name}: {e}")
            raise StoreError(f"failed to write to store {self.name}: {e}") from e

    async def get(self, key: str) -> bytes:
        try:
            value = await asyncio.to_thread(self._get_sync, key)
        except sqlite3.Error as e:
            raise StoreError(f"failed to read {key} from store {self.name}: {e}") from e

        if value is None:
            raise NotFoundError(f"key {key} not found in store {self.name}")
        return value


# =============================================================================
# STORE PROVIDERS
# =============================================================================

@runtime_checkable
class StoreProvider(Protocol):
    """Opens stores by name."""

    def open_store(self, name: str) -> CapabilityStore: ...


class InMemoryStoreProvider:
    """Hands out one shared in-memory store per name."""

    def __init__(self) -> None:
        self._stores: dict[str, InMemoryCapabilityStore] = {}

    def open_store(self, name: str) -> InMemoryCapabilityStore:
        if name not in self._stores:
            self._stores[name] = InMemoryCapabilityStore(name)
        return self._stores[name]


class SQLiteStoreProvider:
    """Opens SQLite-backed stores inside a single database file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def open_store(self, name: str) -> SQLiteCapabilityStore:
        return SQLiteCapabilityStore(self.path, name)


# =============================================================================
# CAPABILITY RESOLUTION
# =============================================================================

async def get_capability(store: CapabilityStore, key: str) -> Capability:
    """Fetch and parse the capability stored under ``key``.

    Raises:
        NotFoundError: If nothing is stored under ``key``.
        StoreError: On backend failure.
        MalformedCapabilityError: If the stored bytes are not a capability.
    """
    return parse_capability(await store.get(key))


@runtime_checkable
class CapabilityResolver(Protocol):
    """Maps a capability id to the capability document."""

    async def resolve(self, capability_id: str) -> Capability: ...


class StoreCapabilityResolver:
    """Resolves capabilities from a capability store."""

    def __init__(self, store: CapabilityStore) -> None:
        self.store = store

    async def resolve(self, capability_id: str) -> Capability:
        return await get_capability(self.store, capability_id)
