"""Bounded concurrent execution of remote calls.

Items are processed in batches of ``concurrency``; a semaphore bounds the
in-flight calls and ``batch_delay`` spaces the batches out so a large ledger
does not flood the API.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")


class WorkerPool:
    """Semaphore-bounded gather over batches.

    Example:
        pool = WorkerPool(concurrency=5, batch_delay=0.1)
        results = await pool.map(create_account, payloads)
        refs, errors = split_results(results)
    """

    def __init__(self, concurrency: int, batch_delay: float = 0.0, name: str = "pool"):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.batch_delay = batch_delay
        self.logger = logger.bind(service="worker_pool", pool=name)

    async def map(
        self,
        func: Callable[[T], Awaitable[R]],
        items: Sequence[T],
    ) -> list[R | BaseException]:
        """Run ``func`` over ``items`` with bounded concurrency.

        Args:
            func: Coroutine function applied to each item.
            items: Inputs, processed in batches of ``concurrency``.

        Returns:
            One entry per item, in input order. Failed items hold the
            exception instead of a result.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(item: T) -> R:
            async with semaphore:
                return await func(item)

        results: list[R | BaseException] = []
        batch_count = 0

        for start in range(0, len(items), self.concurrency):
            if batch_count and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

            batch = items[start:start + self.concurrency]
            batch_results = await asyncio.gather(
                *[bounded(item) for item in batch],
                return_exceptions=True,
            )
            results.extend(batch_results)
            batch_count += 1

        failures = sum(1 for r in results if isinstance(r, BaseException))
        self.logger.debug(
            "Pool run finished",
            items=len(items),
            batches=batch_count,
            failures=failures,
        )
        return results


def split_results(results: Sequence[R | BaseException]) -> tuple[list[R], list[BaseException]]:
    """Separate successful results from exceptions, keeping order."""
    successes: list[R] = []
    errors: list[BaseException] = []
    for result in results:
        if isinstance(result, BaseException):
            errors.append(result)
        else:
            successes.append(result)
    return successes, errors
