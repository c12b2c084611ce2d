"""TTL cache with in-flight request deduplication.

Learn: Two tiers of state sit behind one object:

1. Snapshots. `set(key, data, ttl)` stores {data, storedAt, expiresAt} in
   a store (memory or file). `get(key)` never returns an entry whose
   expiresAt <= now: such an entry is evicted on read.
2. Pending operations. `deduplicate(key, operation)` starts `operation`
   once per key; every caller that arrives while it is running awaits the
   same task and gets the same result, or the same exception. When the
   task settles the slot is cleared, so a later call starts fresh.

Everything runs on one event loop. The pending map is only touched
between awaits, so no lock is needed.

Cancellation: a caller that is cancelled while waiting only drops its own
interest (the task is shielded). When the last waiter goes away the task
is cancelled too. `cancel(key)` drops an operation for everyone.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from peerhire.client.storage import CacheEntry, Clock, MemoryStore

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class _Pending:
    task: asyncio.Task
    waiters: int = 0


class AuthCache:
    def __init__(self, store: Optional[MemoryStore] = None, clock: Clock = time.time):
        self.store = store if store is not None else MemoryStore()
        self._clock = clock
        self._pending: dict[str, _Pending] = {}

    # ─── Snapshots ───────────────────────────────────────

    def set(self, key: str, data: Any, ttl: float) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry(key=key, data=data, stored_at=now, expires_at=now + ttl)
        self.store.save(entry)
        return entry

    def entry(self, key: str) -> Optional[CacheEntry]:
        """The live entry for `key`, evicting it first if it has expired."""
        entry = self.store.load(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            self.store.delete(key)
            return None
        return entry

    def get(self, key: str) -> Any:
        entry = self.entry(key)
        return entry.data if entry is not None else None

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one snapshot, or all of them when no key is given."""
        if key is None:
            self.store.clear()
        else:
            self.store.delete(key)

    # ─── In-flight deduplication ─────────────────────────

    def pending(self, key: str) -> bool:
        p = self._pending.get(key)
        return p is not None and not p.task.done()

    async def deduplicate(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        p = self._pending.get(key)
        if p is None or p.task.done():
            task = asyncio.ensure_future(operation())
            p = _Pending(task)
            self._pending[key] = p
            task.add_done_callback(lambda t, k=key, mine=p: self._settled(k, mine))
        else:
            logger.debug("client.request_deduplicated", key=key)

        p.waiters += 1
        try:
            return await asyncio.shield(p.task)
        finally:
            p.waiters -= 1
            if p.waiters == 0 and not p.task.done():
                p.task.cancel()

    def _settled(self, key: str, p: _Pending) -> None:
        # A newer operation may already own the slot
        if self._pending.get(key) is p:
            del self._pending[key]
        if not p.task.cancelled() and p.task.exception() is not None:
            logger.debug("client.operation_failed", key=key, error=str(p.task.exception()))

    def cancel(self, key: str) -> bool:
        """Cancel the in-flight operation for `key`. Every waiter sees CancelledError."""
        p = self._pending.pop(key, None)
        if p is None or p.task.done():
            return False
        p.task.cancel()
        return True

    def close(self) -> None:
        """Cancel every in-flight operation. Snapshots are kept."""
        for key in list(self._pending):
            self.cancel(key)
