"""Client cache tests — TTL eviction, persistence, deduplication, cancellation.

Learn: The cache takes a clock, so the TTL boundary is checked by moving
a fake clock. Deduplication tests hold the shared operation open on an
asyncio.Event so several callers are guaranteed to overlap.
"""

import asyncio
import json
import os
import stat
import time

import jwt
import pytest

from peerhire.client.cache import AuthCache
from peerhire.client.storage import FileStore, MemoryStore, TokenStore


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# ═══════════════════════════════════════════════════════════
# TTL
# ═══════════════════════════════════════════════════════════


def test_ttl_boundary():
    """Visible strictly before storedAt + ttl, gone at storedAt + ttl."""
    clock = FakeClock()
    cache = AuthCache(clock=clock)
    entry = cache.set("user", {"id": "1"}, ttl=30)
    assert entry.stored_at == 1_000.0
    assert entry.expires_at == 1_030.0

    clock.now = 1_029.999
    assert cache.get("user") == {"id": "1"}

    clock.now = 1_030.0
    assert cache.get("user") is None
    # Evicted on read
    assert cache.store.load("user") is None


def test_get_missing_key():
    assert AuthCache().get("nothing") is None


def test_set_overwrites():
    clock = FakeClock()
    cache = AuthCache(clock=clock)
    cache.set("k", "old", ttl=1)
    cache.set("k", "new", ttl=100)
    clock.now += 50
    assert cache.get("k") == "new"


def test_invalidate_one_and_all():
    cache = AuthCache()
    cache.set("a", 1, ttl=60)
    cache.set("b", 2, ttl=60)
    cache.invalidate("a")
    assert cache.get("a") is None
    assert cache.get("b") == 2
    cache.invalidate()
    assert cache.get("b") is None


def test_file_store_survives_restart(tmp_path):
    path = tmp_path / "cache.json"
    clock = FakeClock()
    AuthCache(FileStore(path), clock=clock).set("preferredRole", "freelancer", ttl=60)

    doc = json.loads(path.read_text())
    assert doc["preferredRole"]["storedAt"] == 1_000.0
    assert doc["preferredRole"]["expiresAt"] == 1_060.0

    reopened = AuthCache(FileStore(path), clock=clock)
    assert reopened.get("preferredRole") == "freelancer"
    clock.now = 1_060.0
    assert reopened.get("preferredRole") is None
    assert "preferredRole" not in json.loads(path.read_text())


def test_file_store_corrupt_file(tmp_path):
    path = tmp_path / "cache.json"
    path.write_text("{not json")
    store = FileStore(path)
    assert store.keys() == []


def test_memory_store_is_default():
    assert isinstance(AuthCache().store, MemoryStore)


# ═══════════════════════════════════════════════════════════
# Token store
# ═══════════════════════════════════════════════════════════


def _token(exp: int) -> str:
    return jwt.encode(
        {"sub": "1", "exp": exp}, "client-side-never-checks-this-key-000", algorithm="HS256"
    )


def test_token_store_expires_with_token():
    clock = FakeClock(now=time.time())
    store = TokenStore("http://api", clock=clock)
    exp = int(clock.now) + 100
    store.save(_token(exp))
    assert store.load() is not None
    clock.now = exp
    assert store.load() is None


def test_token_store_file_permissions_and_host_scope(tmp_path):
    path = tmp_path / "session.json"
    token = _token(int(time.time()) + 3600)

    TokenStore("http://api-a", path).save(token)
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    assert TokenStore("http://api-a", path).load() == token
    assert TokenStore("http://api-b", path).load() is None

    TokenStore("http://api-a", path).clear()
    assert TokenStore("http://api-a", path).load() is None


# ═══════════════════════════════════════════════════════════
# Deduplication
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_invocation():
    cache = AuthCache()
    release = asyncio.Event()
    calls = 0

    async def operation():
        nonlocal calls
        calls += 1
        await release.wait()
        return {"value": 42}

    waiters = [asyncio.create_task(cache.deduplicate("k", operation)) for _ in range(5)]
    await asyncio.sleep(0)
    assert cache.pending("k")
    release.set()
    results = await asyncio.gather(*waiters)

    assert calls == 1
    assert all(r == {"value": 42} for r in results)
    # All callers got the very same object
    assert all(r is results[0] for r in results)


@pytest.mark.asyncio
async def test_concurrent_callers_share_rejection():
    cache = AuthCache()
    release = asyncio.Event()
    calls = 0

    async def operation():
        nonlocal calls
        calls += 1
        await release.wait()
        raise RuntimeError("boom")

    waiters = [asyncio.create_task(cache.deduplicate("k", operation)) for _ in range(3)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)

    assert calls == 1
    assert all(isinstance(r, RuntimeError) and str(r) == "boom" for r in results)


@pytest.mark.asyncio
async def test_slot_cleared_after_settle():
    cache = AuthCache()
    calls = 0

    async def operation():
        nonlocal calls
        calls += 1
        return calls

    assert await cache.deduplicate("k", operation) == 1
    await asyncio.sleep(0)
    assert not cache.pending("k")
    assert await cache.deduplicate("k", operation) == 2


@pytest.mark.asyncio
async def test_slot_cleared_after_failure():
    cache = AuthCache()
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) == 1:
            raise ValueError("first try fails")
        return "ok"

    with pytest.raises(ValueError):
        await cache.deduplicate("k", flaky)
    assert await cache.deduplicate("k", flaky) == "ok"


@pytest.mark.asyncio
async def test_different_keys_run_independently():
    cache = AuthCache()

    async def op(v):
        await asyncio.sleep(0)
        return v

    a, b = await asyncio.gather(
        cache.deduplicate("a", lambda: op("A")), cache.deduplicate("b", lambda: op("B"))
    )
    assert (a, b) == ("A", "B")


# ═══════════════════════════════════════════════════════════
# Cancellation
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_one_waiter_cancelled_others_still_served():
    cache = AuthCache()
    release = asyncio.Event()

    async def operation():
        await release.wait()
        return "done"

    first = asyncio.create_task(cache.deduplicate("k", operation))
    second = asyncio.create_task(cache.deduplicate("k", operation))
    await asyncio.sleep(0)

    first.cancel()
    await asyncio.sleep(0)
    assert cache.pending("k")

    release.set()
    assert await second == "done"
    with pytest.raises(asyncio.CancelledError):
        await first


@pytest.mark.asyncio
async def test_last_waiter_cancelled_cancels_operation():
    cache = AuthCache()
    started = asyncio.Event()
    finished = False

    async def operation():
        nonlocal finished
        started.set()
        await asyncio.sleep(3600)
        finished = True

    waiter = asyncio.create_task(cache.deduplicate("k", operation))
    await started.wait()
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    await asyncio.sleep(0)

    assert not cache.pending("k")
    assert not finished


@pytest.mark.asyncio
async def test_cancel_key_drops_operation_for_everyone():
    cache = AuthCache()
    started = asyncio.Event()

    async def operation():
        started.set()
        await asyncio.sleep(3600)

    waiters = [asyncio.create_task(cache.deduplicate("k", operation)) for _ in range(3)]
    await started.wait()

    assert cache.cancel("k") is True
    results = await asyncio.gather(*waiters, return_exceptions=True)
    assert all(isinstance(r, asyncio.CancelledError) for r in results)
    assert cache.cancel("k") is False


@pytest.mark.asyncio
async def test_close_cancels_everything():
    cache = AuthCache()
    started = asyncio.Event()

    async def operation():
        started.set()
        await asyncio.sleep(3600)

    waiter = asyncio.create_task(cache.deduplicate("k", operation))
    await started.wait()
    cache.close()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    assert not cache.pending("k")
