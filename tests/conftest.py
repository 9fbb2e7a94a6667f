from __future__ import annotations

import pytest

from s3bin import BinCache, MemoryObjectStore


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture
def cache(store: MemoryObjectStore) -> BinCache:
    return BinCache(store)
