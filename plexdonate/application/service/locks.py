"""Per-subscription locks.

Events for the same ``(provider, subscription_id)`` are serialized; events for
different subscriptions run concurrently. ``asyncio.Lock`` wakes waiters in
FIFO order, so acquisition is fair.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import logfire

from plexdonate.application.error import LockTimeoutError


class SubscriptionLocks:
    """Registry of locks keyed by ``(provider, subscription_id)``."""

    def __init__(self, timeout_seconds: float = 60.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._holders: dict[tuple[str, str], int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, key: tuple[str, str]) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(
        self, key: tuple[str, str], timeout_seconds: float | None = None
    ) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block.

        Args:
            key: ``(provider, subscription_id)``
            timeout_seconds: Override of the configured wait

        Raises:
            LockTimeoutError: If the lock is not acquired in time
        """
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError as e:
                logfire.warn(
                    "Subscription lock timed out",
                    provider=key[0],
                    subscription_id=key[1],
                    timeout_seconds=timeout,
                )
                raise LockTimeoutError(key, timeout) from e
            try:
                yield
            finally:
                lock.release()
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                self._locks.pop(key, None)
