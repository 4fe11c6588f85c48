"""Timer abstraction for polling loops and backoff.

Orchestrators never call asyncio.sleep, asyncio.wait_for or time.monotonic
directly, so tests can drive them with a virtual clock.
"""

import asyncio
import time
from typing import Awaitable, Protocol, TypeVar

T = TypeVar("T")


class Scheduler(Protocol):
    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...

    async def wait_for(self, awaitable: Awaitable[T], timeout: float) -> T:
        """Await with a bound; raises asyncio.TimeoutError when it is exceeded."""
        ...


class AsyncioScheduler:
    """Real-time scheduler: non-blocking sleeps on the running event loop."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def wait_for(self, awaitable: Awaitable[T], timeout: float) -> T:
        return await asyncio.wait_for(awaitable, timeout=max(timeout, 0.0))
