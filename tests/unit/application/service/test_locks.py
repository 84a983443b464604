"""Unit tests for SubscriptionLocks."""

import asyncio

import pytest

from plexdonate.application.error import LockTimeoutError
from plexdonate.application.service import SubscriptionLocks


class TestSubscriptionLocks:
    """Tests for per-subscription serialization."""

    @pytest.mark.asyncio
    async def test_same_key_runs_in_arrival_order(self):
        """Holders of one key run one at a time, first come first served."""
        # Arrange
        locks = SubscriptionLocks(timeout_seconds=1)
        order: list[str] = []

        async def work(name: str) -> None:
            async with locks.hold(("paypal", "I-1")):
                order.append(f"{name}:start")
                await asyncio.sleep(0.01)
                order.append(f"{name}:end")

        # Act
        first = asyncio.create_task(work("a"))
        await asyncio.sleep(0)
        second = asyncio.create_task(work("b"))
        await asyncio.gather(first, second)

        # Assert
        assert order == ["a:start", "a:end", "b:start", "b:end"]

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        """Locks for different subscriptions do not block each other."""
        # Arrange
        locks = SubscriptionLocks(timeout_seconds=0.5)
        inside = asyncio.Event()
        release = asyncio.Event()

        async def holder() -> None:
            async with locks.hold(("paypal", "I-1")):
                inside.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await inside.wait()

        # Act
        async with locks.hold(("stripe", "I-1")):
            other_locked = locks.is_locked(("paypal", "I-1"))

        # Assert
        assert other_locked is True
        release.set()
        await task

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        """Waiting past the timeout raises LockTimeoutError with the key."""
        # Arrange
        locks = SubscriptionLocks(timeout_seconds=0.02)
        inside = asyncio.Event()
        release = asyncio.Event()

        async def holder() -> None:
            async with locks.hold(("paypal", "I-1")):
                inside.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await inside.wait()

        # Act & Assert
        with pytest.raises(LockTimeoutError) as exc_info:
            async with locks.hold(("paypal", "I-1")):
                pass
        assert exc_info.value.key == ("paypal", "I-1")

        release.set()
        await task

    @pytest.mark.asyncio
    async def test_idle_locks_are_dropped(self):
        """Locks are forgotten once nobody holds or waits on them."""
        # Arrange
        locks = SubscriptionLocks()

        # Act
        async with locks.hold(("paypal", "I-1")):
            during = len(locks)

        # Assert
        assert during == 1
        assert len(locks) == 0
        assert locks.is_locked(("paypal", "I-1")) is False

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self):
        """An exception inside the block releases the lock."""
        # Arrange
        locks = SubscriptionLocks(timeout_seconds=0.1)

        # Act
        with pytest.raises(RuntimeError):
            async with locks.hold(("paypal", "I-1")):
                raise RuntimeError("boom")

        # Assert
        async with locks.hold(("paypal", "I-1")):
            assert locks.is_locked(("paypal", "I-1"))
