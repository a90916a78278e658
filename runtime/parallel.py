"""Data-parallel helpers on a shared thread pool.

Every helper drains all of its tasks before returning, so consecutive calls
are separated by a hard barrier. Results keep the order of the input.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

logger = logging.getLogger("mesh_refiner")

T = TypeVar("T")
R = TypeVar("R")


def chunk_ranges(
    size: int, num_workers: int, chunk_size: Optional[int] = None
) -> List[range]:
    """Split ``range(size)`` into contiguous blocks."""
    if size <= 0:
        return []
    if chunk_size is None:
        chunk_size = max(1, -(-size // max(1, num_workers)))
    return [range(start, min(start + chunk_size, size)) for start in range(0, size, chunk_size)]


def _run_blocks(
    items: Sequence[T],
    block_fn: Callable[[Sequence[T]], R],
    num_workers: int,
    chunk_size: Optional[int],
) -> List[R]:
    blocks = [items[r.start : r.stop] for r in chunk_ranges(len(items), num_workers, chunk_size)]
    if not blocks:
        return []
    if num_workers <= 1 or len(blocks) == 1:
        return [block_fn(block) for block in blocks]
    with ThreadPoolExecutor(max_workers=num_workers) as pool:
        # map() re-raises the first worker exception when results are consumed
        return list(pool.map(block_fn, blocks))


def block_for_each(
    items: Iterable[T],
    fn: Callable[[T], None],
    *,
    num_workers: int = 1,
    chunk_size: Optional[int] = None,
) -> None:
    """Call ``fn`` on every item, spreading contiguous blocks over the pool."""
    items = list(items)

    def _block(block):
        for item in block:
            fn(item)

    _run_blocks(items, _block, num_workers, chunk_size)


def parallel_map(
    items: Iterable[T],
    fn: Callable[[T], R],
    *,
    num_workers: int = 1,
    chunk_size: Optional[int] = None,
) -> List[R]:
    """Ordered ``[fn(item) for item in items]`` computed on the pool."""
    items = list(items)
    results = _run_blocks(
        items, lambda block: [fn(item) for item in block], num_workers, chunk_size
    )
    return [value for block in results for value in block]


def max_reduction(
    items: Iterable[T],
    key: Callable[[T], int],
    *,
    initial: int = 0,
    num_workers: int = 1,
    chunk_size: Optional[int] = None,
) -> int:
    """Parallel maximum of ``initial`` and every ``key(item)``."""
    items = list(items)
    partials = _run_blocks(
        items,
        lambda block: max((key(item) for item in block), default=initial),
        num_workers,
        chunk_size,
    )
    return max([initial, *partials])
