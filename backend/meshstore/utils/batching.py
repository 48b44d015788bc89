"""Fixed-size batching for store writes.

Every INSERT/UPDATE issued during ingestion goes through ``chunked`` so no
single statement carries more than the configured number of rows (500 by
default), which keeps parameter counts and payload sizes bounded.

Example:
    >>> from meshstore.utils.batching import chunked
    >>> [len(batch) for batch in chunked(range(1200), 500)]
    [500, 500, 200]
"""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

DEFAULT_CHUNK_SIZE = 500

T = TypeVar("T")


def chunked(
    items: Iterable[T],
    size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[list[T]]:
    """Yield consecutive lists of at most ``size`` items.

    Args:
        items: Any iterable; consumed lazily.
        size: Maximum batch length, must be positive.

    Raises:
        ValueError: If ``size`` is not positive.
    """
    if size <= 0:
        raise ValueError("size must be positive")
    iterator = iter(items)
    while batch := list(itertools.islice(iterator, size)):
        yield batch
