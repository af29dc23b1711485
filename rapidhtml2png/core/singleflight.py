"""
Single-Flight Coordination
==========================

Coordinates concurrent calls for the same key so only one coroutine performs
the work while the others await the same Future.

The work runs as a detached task. A caller that is cancelled stops waiting,
but the task keeps going, so an abandoned render still reaches the cache.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, Set, TypeVar

from rapidhtml2png.config.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def consume_future_exception(fut: "asyncio.Future[Any]") -> None:
    """Avoid 'Future exception was never retrieved' when every waiter left."""
    if fut.cancelled():
        return
    fut.exception()


class SingleFlight(Generic[T]):
    """Per-key deduplication of in-progress async work."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._inflight: Dict[Hashable, "asyncio.Future[T]"] = {}
        self._tasks: Set["asyncio.Task[None]"] = set()

    def __len__(self) -> int:
        return len(self._inflight)

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    async def do(self, key: Hashable, work: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``work`` once for ``key`` and share its outcome.

        If a call for ``key`` is already in progress, wait for it instead.
        Exceptions propagate to every waiter.
        """
        async with self._lock:
            fut = self._inflight.get(key)
            if fut is None:
                fut = asyncio.get_running_loop().create_future()
                fut.add_done_callback(consume_future_exception)
                self._inflight[key] = fut
                task = asyncio.create_task(self._run(key, fut, work))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
            else:
                logger.debug("Joining in-flight work", key=str(key))

        return await asyncio.shield(fut)

    async def _run(
        self, key: Hashable, fut: "asyncio.Future[T]", work: Callable[[], Awaitable[T]]
    ) -> None:
        try:
            value = await work()
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as e:
            fut.set_exception(e)
        else:
            fut.set_result(value)
        finally:
            async with self._lock:
                self._inflight.pop(key, None)

    async def drain(self) -> None:
        """Wait for every detached task to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
