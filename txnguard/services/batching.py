"""
TxnGuard — Windowed Batch Runner

Runs a coroutine per item, ``size`` at a time, pausing between windows to stay
under the AI provider's rate limits.  Results keep input order; a failed item
is returned as its exception so one bad item never sinks its neighbours.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Sequence, TypeVar, Union

logger = logging.getLogger("txnguard.batching")

T = TypeVar("T")
R = TypeVar("R")


async def run_in_windows(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    size: int,
    pause_seconds: float = 0.0,
) -> List[Union[R, BaseException]]:
    results: List[Union[R, BaseException]] = []
    for start in range(0, len(items), size):
        window = items[start:start + size]
        outcomes = await asyncio.gather(
            *(worker(item) for item in window), return_exceptions=True
        )
        for offset, outcome in enumerate(outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Batch item %d failed: %s", start + offset, outcome,
                )
        results.extend(outcomes)

        if pause_seconds > 0 and start + size < len(items):
            await asyncio.sleep(pause_seconds)
    return results
