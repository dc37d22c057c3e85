"""
Bounded worker pool for concurrent external I/O.

    items ──► queue ──► N workers ──► results[index]

A fixed number of asyncio workers drain a queue of ``(index, item)`` pairs.
Each worker writes only to ``results[index]``, so results are merged
without locking and come back in input order. Every unit runs under its
own timeout; a unit that raises or times out yields a ``UnitFailure``
in its slot instead of failing the pool.

Cancelling the awaiting task cancels all workers (in-flight calls
included) and re-raises CancelledError.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class UnitFailure:
    """Slot value for a unit that raised or timed out."""
    error: BaseException
    timed_out: bool = False

    @property
    def message(self) -> str:
        if self.timed_out:
            return "timed out"
        return str(self.error) or type(self.error).__name__


class BoundedPool(Generic[T, R]):
    """
    Run ``worker(item)`` over a sequence with at most ``concurrency``
    calls in flight.

    Usage:
        pool = BoundedPool(resolve_one, concurrency=20, timeout=10.0, name="geocode")
        slots = await pool.map(records)
    """

    def __init__(
        self,
        worker: Callable[[T], Awaitable[R]],
        *,
        concurrency: int,
        timeout: Optional[float] = None,
        name: str = "pool",
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._worker = worker
        self.concurrency = concurrency
        self.timeout = timeout
        self.name = name

    async def _run_one(self, item: T) -> Union[R, UnitFailure]:
        try:
            if self.timeout is None:
                return await self._worker(item)
            return await asyncio.wait_for(self._worker(item), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            return UnitFailure(exc, timed_out=True)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return UnitFailure(exc)

    async def map(self, items: Sequence[T]) -> List[Union[R, UnitFailure]]:
        """Process all items; returns one slot per item, in input order."""
        if not items:
            return []

        queue: "asyncio.Queue[tuple[int, T]]" = asyncio.Queue()
        for index, item in enumerate(items):
            queue.put_nowait((index, item))

        results: List[Union[R, UnitFailure, None]] = [None] * len(items)

        async def drain() -> None:
            while True:
                try:
                    index, item = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                results[index] = await self._run_one(item)

        n_workers = min(self.concurrency, len(items))
        workers = [asyncio.create_task(drain()) for _ in range(n_workers)]
        try:
            await asyncio.gather(*workers)
        except asyncio.CancelledError:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            logger.info("Pool %s cancelled with %d units pending", self.name, queue.qsize())
            raise

        failures = sum(1 for r in results if isinstance(r, UnitFailure))
        logger.debug(
            "Pool %s finished: %d units, %d failed, %d workers",
            self.name, len(items), failures, n_workers,
        )
        return results  # type: ignore[return-value]
