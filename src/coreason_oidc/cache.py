# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc

"""
Key-value cache used to keep discovery documents and JWKS between flows.
"""

from typing import Protocol

import anyio


class KeyValueCache(Protocol):
    """
    Protocol for the string key-value store holding serialized provider documents.

    Implementations must tolerate concurrent reads and writes. Last writer wins.
    """

    async def get(self, key: str) -> str | None:
        """Returns the stored value, or None on a miss."""
        ...

    async def put(self, key: str, value: str) -> None:
        """Stores the value under the key, replacing any previous value."""
        ...


class MemoryCache:
    """
    In-memory implementation of KeyValueCache.
    Entries never expire. Not suitable for sharing between processes.
    """

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._lock: anyio.Lock | None = None

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def put(self, key: str, value: str) -> None:
        # Lazily created so the cache can be built outside an event loop
        if self._lock is None:
            self._lock = anyio.Lock()
        async with self._lock:
            self._store[key] = value

    def __len__(self) -> int:
        return len(self._store)


def discovery_cache_key(provider_uri: str) -> str:
    return f"coreason_oidc:discovery:{provider_uri}"


def jwks_cache_key(provider_uri: str) -> str:
    return f"coreason_oidc:jwks:{provider_uri}"
