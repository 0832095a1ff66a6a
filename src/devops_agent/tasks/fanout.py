"""Bounded fan-out with per-item results.

``gather_bounded`` runs one coroutine per item with at most ``limit`` in
flight. Each item yields an Outcome carrying either its value or its
error, so one failing item never cancels the others. Outcomes arrive in
completion order; use ``sorted_outcomes`` when order matters.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, List, Optional, TypeVar


K = TypeVar("K")
T = TypeVar("T")


@dataclass
class Outcome(Generic[K, T]):
    """Result of one fan-out item."""

    key: K
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_bounded(
    items: Iterable[K],
    fn: Callable[[K], Awaitable[T]],
    limit: int,
) -> List[Outcome[K, T]]:
    """Run ``fn`` over ``items`` with bounded concurrency.

    Args:
        items: Inputs, one coroutine each.
        fn: Coroutine function applied to each item.
        limit: Maximum number of ``fn`` calls in flight.

    Returns:
        One Outcome per item, in completion order.

    Raises:
        ValueError: If ``limit`` is not positive.
    """
    if limit <= 0:
        raise ValueError("limit must be > 0")

    semaphore = asyncio.Semaphore(limit)

    async def run_one(item: K) -> Outcome[K, T]:
        async with semaphore:
            try:
                return Outcome(key=item, value=await fn(item))
            except Exception as e:
                return Outcome(key=item, error=e)

    tasks = [asyncio.ensure_future(run_one(item)) for item in items]
    outcomes: List[Outcome[K, T]] = []
    try:
        for next_done in asyncio.as_completed(tasks):
            outcomes.append(await next_done)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    return outcomes


def sorted_outcomes(outcomes: Iterable[Outcome[K, T]]) -> List[Outcome[K, T]]:
    """Order outcomes by key so aggregates do not depend on completion order."""
    return sorted(outcomes, key=lambda o: str(o.key))
