# src/strata_sync/parallel.py
"""
Bounded fan-out of async work items.

Items are fed through a queue to a fixed pool of worker tasks, so at most
`concurrency` invocations are in flight. A failing item is recorded and the
pool moves on; one failure never cancels its siblings.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, List, Sequence, TypeVar

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class ParallelResult(Generic[R]):
    """
    Outcome of a bounded parallel run.

    Attributes:
        results (List[R]): Worker return values, in completion order.
        errors (List[Exception]): Errors raised by failing invocations.
    """

    results: List[R] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)


async def run_bounded(
    items: Sequence[T],
    concurrency: int,
    worker: Callable[[T], Awaitable[R]],
) -> ParallelResult[R]:
    """
    Run `worker` over every item with at most `concurrency` in flight.

    With a concurrency of 1 the items are processed strictly in order.

    Args:
        items (Sequence[T]): Work items.
        concurrency (int): Maximum number of concurrent invocations.
        worker (Callable[[T], Awaitable[R]]): The async unit of work.

    Returns:
        ParallelResult[R]: Collected results and errors.
    """
    outcome: ParallelResult[R] = ParallelResult()
    if not items:
        return outcome

    queue: asyncio.Queue[T] = asyncio.Queue()
    for item in items:
        queue.put_nowait(item)

    async def _consume(worker_id: int) -> None:
        while True:
            try:
                item: T = queue.get_nowait()
            except asyncio.QueueEmpty:
                logger.debug(f"Parallel worker {worker_id} drained.")
                return
            try:
                outcome.results.append(await worker(item))
            except Exception as e:
                outcome.errors.append(e)
            finally:
                queue.task_done()

    pool_size: int = max(1, min(concurrency, len(items)))
    await asyncio.gather(*(_consume(i) for i in range(pool_size)))
    return outcome
