import asyncio
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager


def request_key(request_id: str) -> str:
    return f"request:{request_id}"


def person_key(person_id: str) -> str:
    return f"person:{person_id}"


def camp_key(camp_id: str) -> str:
    return f"camp:{camp_id}"


class KeyedLocks:
    """Per-key asyncio locks, created on first use."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._locks_lock = asyncio.Lock()

    async def get(self, key: str) -> asyncio.Lock:
        """Get or create the lock guarding a single key."""
        async with self._locks_lock:
            if key not in self._locks:
                self._locks[key] = asyncio.Lock()
            return self._locks[key]

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        """Acquire every key in sorted order and release them on exit.

        Callers must take all the keys they need in one call; the global sort
        order is what keeps concurrent operations deadlock-free.
        """
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                lock = await self.get(key)
                await stack.enter_async_context(lock)
            yield

    def clear(self) -> None:
        self._locks.clear()
