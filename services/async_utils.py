import asyncio
from typing import Any, Awaitable, Callable, List, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def gather_in_batches(
    func: Callable[[T], Awaitable[R]],
    items: Sequence[T],
    batch_size: int = 5,
) -> List[R]:
    """
    Await func(item) for every item, batch_size at a time.
    Each batch runs concurrently; batches run one after another. Returns results in order.
    The first exception raised by a call propagates to the caller.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    results: List[R] = []
    for start in range(0, len(items), batch_size):
        batch = items[start:start + batch_size]
        results.extend(await asyncio.gather(*(func(item) for item in batch)))
    return results


async def collect_pages(
    fetch_page: Callable[[int], Awaitable[List[Any]]],
    page_size: int,
) -> List[Any]:
    """
    Walk a page-numbered endpoint starting at page 1 until a short page comes back.
    The upstream reports no totals, so an exactly full page always costs one more request.
    """
    collected: List[Any] = []
    page = 1
    while True:
        items = await fetch_page(page)
        collected.extend(items)
        if len(items) < page_size:
            break
        page += 1
    return collected
