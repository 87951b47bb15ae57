"""
RequestGuard: Rate Limiter Counters
=====================================

What:  Attempt counters with a decay window, stored in a KeyValueStore.
How:   Two keys per counter:
           {key}        → attempt count
           {key}:timer  → unix timestamp at which the window ends
       The window opens on the first hit and lasts `decay_seconds`; both keys
       expire with it. A counter whose timer has gone is treated as reset.
Who:   RateLimitingMiddleware (pre-check) and TerminatingMiddleware
       (post-check increment).
"""

import time
from typing import Callable

from requestguard.services.cache import KeyValueStore


class RateLimiter:
    """Fixed-window attempt counters over a shared store."""

    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time):
        self.store = store
        self._clock = clock

    @staticmethod
    def _timer_key(key: str) -> str:
        return f"{key}:timer"

    async def attempts(self, key: str) -> int:
        return int(await self.store.get(key, 0) or 0)

    async def too_many_attempts(self, key: str, max_attempts: int) -> bool:
        """
        True while the counter is at or above `max_attempts` inside its window.

        A counter that reached the limit but whose window has elapsed is reset
        here so the next increment starts a fresh window.
        """
        if await self.attempts(key) >= max_attempts:
            if await self.store.has(self._timer_key(key)):
                return True
            await self.reset_attempts(key)
        return False

    async def increment(self, key: str, decay_seconds: int = 60, amount: int = 1) -> int:
        """Count `amount` attempts, opening a window on the first hit."""
        await self.store.add(
            self._timer_key(key), int(self._clock()) + decay_seconds, decay_seconds
        )
        added = await self.store.add(key, 0, decay_seconds)
        hits = await self.store.increment(key, amount)

        # The counter outlived its timer: restart it with a fresh TTL
        if not added and hits == amount:
            await self.store.put(key, amount, decay_seconds)

        return hits

    async def available_in(self, key: str) -> int:
        """Seconds until the current window ends (0 when no window is open)."""
        ends_at = await self.store.get(self._timer_key(key))
        if ends_at is None:
            return 0
        return max(0, int(ends_at) - int(self._clock()))

    async def reset_attempts(self, key: str) -> None:
        await self.store.forget(key)

    async def clear(self, key: str) -> None:
        await self.reset_attempts(key)
        await self.store.forget(self._timer_key(key))
