"""Per-key debounced flushing for high-frequency streaming updates.

Every schedule(key) restarts that key's timer; the flush callback runs once
the key has been quiet for `delay` seconds. Flushes of the same key never
overlap, so a slow earlier write cannot land after a newer one.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List

logger = logging.getLogger(__name__)

FlushCallback = Callable[[str], Awaitable[None]]


class DebouncedFlusher:

    def __init__(self, delay: float, flush_callback: FlushCallback):
        self.delay = max(0.0, delay)
        self._flush_callback = flush_callback
        self._timers: Dict[str, asyncio.Task] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    def schedule(self, key: str) -> None:
        """(Re)starts the quiet-period timer for `key`. Must be called inside a running loop."""
        self.cancel(key)
        self._timers[key] = asyncio.get_running_loop().create_task(self._delayed_flush(key))

    def cancel(self, key: str) -> bool:
        """Drops a pending timer. Returns True if one was pending."""
        task = self._timers.pop(key, None)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    async def flush_now(self, key: str) -> None:
        """Cancels any pending timer and flushes immediately."""
        self.cancel(key)
        await self._flush(key)

    def cancel_all(self) -> None:
        for key in list(self._timers):
            self.cancel(key)

    async def flush_all(self) -> None:
        for key in self.pending_keys():
            await self.flush_now(key)

    def pending_keys(self) -> List[str]:
        return list(self._timers)

    def has_pending(self, key: str) -> bool:
        return key in self._timers

    async def _delayed_flush(self, key: str) -> None:
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            return
        # Leaving the map before flushing lets a new schedule() start a fresh timer
        if self._timers.get(key) is asyncio.current_task():
            del self._timers[key]
        await self._flush(key)

    async def _flush(self, key: str) -> None:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                try:
                    await self._flush_callback(key)
                except Exception as e:
                    logger.error(f"Debounced flush for '{key}' failed: {e}", exc_info=True)
        finally:
            # A lock only lives while some flush of its key holds or awaits it
            remaining = self._lock_users.pop(key, 1) - 1
            if remaining > 0:
                self._lock_users[key] = remaining
            else:
                self._locks.pop(key, None)
