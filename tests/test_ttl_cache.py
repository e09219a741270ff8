import pytest

from pinwallet.cache import TTLCache


@pytest.mark.asyncio
async def test_expired_entries_are_dropped(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr("pinwallet.cache.time.time", lambda: now[0])
    cache = TTLCache(default_ttl=10)

    await cache.set("a", 1)
    assert await cache.get("a") == 1

    now[0] += 11
    assert await cache.get("a") is None
    assert cache.size() == 0


@pytest.mark.asyncio
async def test_lru_eviction():
    cache = TTLCache(default_ttl=60, max_size=2)
    await cache.set("a", 1)
    await cache.set("b", 2)
    await cache.get("a")
    await cache.set("c", 3)

    assert await cache.get("b") is None
    assert await cache.get("a") == 1
    assert await cache.get("c") == 3


@pytest.mark.asyncio
async def test_invalidate_prefix_and_delete():
    cache = TTLCache()
    await cache.set("user_address:0xabc:connected", "x")
    await cache.set("user_address::disconnected", "y")
    await cache.set("other", "z")

    assert await cache.invalidate_prefix("user_address:") == 2
    await cache.delete("other")
    assert cache.size() == 0
