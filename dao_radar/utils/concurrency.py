"""
Bounded concurrency executor and cancellation token.

``run_with_concurrency`` runs one coroutine per item with a fixed pool of
workers. Each worker pulls the next unprocessed index, so a slow item never
holds up a whole chunk the way sequential batching would. Every item yields a
``Success`` or ``Failure`` in input order; one failing item never stops the
others.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar, Union

from dao_radar.exceptions import AggregationCancelled, InvalidInputError

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class Success(Generic[R]):
    value: R

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> R:
        return self.value


@dataclass(frozen=True)
class Failure:
    error: BaseException

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self):
        raise self.error


Result = Union[Success[R], Failure]


async def run_with_concurrency(
    items: Sequence[T],
    task: Callable[[T], Awaitable[R]],
    concurrency: int,
) -> List[Result]:
    """
    Run ``task`` over ``items`` with at most ``concurrency`` calls in flight.

    Args:
        items: Inputs, processed in index order by whichever worker is free
        task: Async callable applied to each item
        concurrency: Worker pool size (values above len(items) are fine)

    Returns:
        One Success/Failure per item, in input order
    """
    if concurrency < 1:
        raise InvalidInputError(f"concurrency must be at least 1, got {concurrency}")
    if not items:
        return []

    results: List[Optional[Result]] = [None] * len(items)
    next_index = 0

    async def worker() -> None:
        nonlocal next_index
        while next_index < len(items):
            # No await between the check and the increment, so indexes are never shared
            index = next_index
            next_index += 1
            try:
                results[index] = Success(await task(items[index]))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                results[index] = Failure(e)

    pool_size = min(concurrency, len(items))
    await asyncio.gather(*(worker() for _ in range(pool_size)))
    return results  # type: ignore[return-value]


class CancellationToken:
    """Cooperative cancellation flag checked after each suspension point."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise AggregationCancelled()


def check_cancelled(token: Optional[CancellationToken]) -> None:
    if token is not None:
        token.raise_if_cancelled()
