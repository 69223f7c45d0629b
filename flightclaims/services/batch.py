"""
Bounded-concurrency batch execution with per-item failure isolation.
"""
import asyncio
from typing import Awaitable, Callable, List, Sequence, TypeVar

from flightclaims.core import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_bounded(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    on_error: Callable[[T, Exception], R],
    concurrency: int = 5,
    timeout: float = 20.0,
) -> List[R]:
    """
    Run `worker` over `items` with at most `concurrency` in flight.

    Each call is bounded by `timeout` seconds. Any exception (including the
    timeout) is converted into a result by `on_error`, so one item never
    aborts its siblings. Results keep the order of `items`.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _run_one(item: T) -> R:
        async with semaphore:
            try:
                return await asyncio.wait_for(worker(item), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Batch item timed out after {timeout}s: {item!r}")
                return on_error(item, TimeoutError(f"Timed out after {timeout}s"))
            except Exception as exc:
                logger.error(f"Batch item failed: {item!r}: {exc}")
                return on_error(item, exc)

    return list(await asyncio.gather(*(_run_one(item) for item in items)))
